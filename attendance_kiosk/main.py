import asyncio
import ipaddress
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from alembic import command  # type: ignore
from alembic.config import Config

from attendance_kiosk.config import settings
from attendance_kiosk.database import AsyncSessionLocal, engine
from attendance_kiosk.kiosk import AttendanceKiosk
from attendance_kiosk.routers import attendance_router, events_router, health_router
from attendance_kiosk.utils.logging import configure_logging, get_logger

configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)
logger = get_logger(__name__)

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_migrations() -> None:
    alembic_cfg = Config(os.path.join(ROOT_DIR, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(ROOT_DIR, "alembic"))
    command.upgrade(alembic_cfg, "head")


# Lifecycle Manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Kiosk starting up... DB URL: {settings.DATABASE_URL}")
    try:
        logger.info("Checking for database migrations...")
        # env.py runs its own event loop, so keep it off this one
        await asyncio.to_thread(run_migrations)
        logger.info("Database is up to date.")
    except Exception as e:
        logger.warning(f"Migration Warning: {e}")

    kiosk = AttendanceKiosk.from_settings(settings, AsyncSessionLocal)
    await kiosk.start()
    app.state.kiosk = kiosk

    yield

    logger.info("Kiosk shutting down...")
    await kiosk.stop()
    await engine.dispose()


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _is_loopback_host(host: str | None) -> bool:
    if not host:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


@app.middleware("http")
async def enforce_local_only_mode(request: Request, call_next):
    if settings.LOCAL_ONLY:
        client_host = request.client.host if request.client else None
        if not _is_loopback_host(client_host):
            return JSONResponse(
                status_code=403,
                content={
                    "detail": "Local-only mode is enabled. Access is allowed only from this machine."
                },
            )
    return await call_next(request)


# --- Register Routers ---
app.include_router(attendance_router)
app.include_router(events_router)
app.include_router(health_router)


def start():
    import uvicorn

    host = "127.0.0.1" if settings.LOCAL_ONLY else settings.HOST
    uvicorn.run(
        "attendance_kiosk.main:app",
        host=host,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "events": "/ws/events",
        "docs": "/docs",
        "version": settings.VERSION,
        "local_only": settings.LOCAL_ONLY,
    }


if __name__ == "__main__":
    start()

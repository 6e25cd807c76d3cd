from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from attendance_kiosk.config import settings
from attendance_kiosk.models import Base


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    # aiosqlite runs the connection in its own thread
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_async_engine(
        url,
        echo=echo,
        future=True,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False so rows stay readable after the commit returns
    return async_sessionmaker(
        bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine) -> None:
    """Create the schema directly. Migrations do this in production."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Yields a session per request for the health check.
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

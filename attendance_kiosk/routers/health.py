from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from attendance_kiosk.database import get_db
from attendance_kiosk.dependencies import get_kiosk
from attendance_kiosk.exceptions import PersistenceError
from attendance_kiosk.kiosk import AttendanceKiosk

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    """
    Liveness check plus the kiosk's current detection mode.
    """
    return {
        "status": "ok",
        "service": "Attendance Kiosk API",
        "attendance_status": kiosk.workflow.status.value,
        "detection_method": kiosk.presence.active_method.value,
        "online": kiosk.connectivity.is_online,
        "camera": kiosk.camera.is_open,
    }


@router.get("/db", status_code=status.HTTP_200_OK)
async def db_health_check(
    db: AsyncSession = Depends(get_db), kiosk: AttendanceKiosk = Depends(get_kiosk)
):
    """
    Verifies the attendance database answers and the records table is readable.
    """
    try:
        result = await db.execute(text("SELECT 1"))
        records = await kiosk.store.count()
    except (SQLAlchemyError, PersistenceError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database connection failed: {str(e)}",
        )
    if result.scalar_one() != 1:
        raise HTTPException(
            status_code=500, detail="Database returned unexpected result"
        )
    return {"status": "up", "database": "connected", "records": records}

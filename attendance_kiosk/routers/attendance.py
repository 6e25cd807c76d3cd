from typing import Awaitable, Callable, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from attendance_kiosk.dependencies import get_kiosk
from attendance_kiosk.exceptions import GatingError, PersistenceError
from attendance_kiosk.kiosk import AttendanceKiosk
from attendance_kiosk.schemas.attendance import (
    AttendanceRecord,
    DailySummary,
    HistoryFilter,
    KioskStatus,
)

router = APIRouter(prefix="/attendance", tags=["attendance"])


async def _run_action(action: Callable[[], Awaitable[AttendanceRecord]]) -> AttendanceRecord:
    try:
        return await action()
    except GatingError as error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": error.reason.value, "message": error.message},
        )
    except PersistenceError as error:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error)
        )


@router.post("/check-in", response_model=AttendanceRecord, status_code=status.HTTP_201_CREATED)
async def check_in(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    """Record a check-in if a face is visible and a location fix is known."""
    return await _run_action(kiosk.workflow.check_in)


@router.post("/check-out", response_model=AttendanceRecord, status_code=status.HTTP_201_CREATED)
async def check_out(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    return await _run_action(kiosk.workflow.check_out)


@router.get("/status", response_model=KioskStatus)
async def get_status(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    return await kiosk.status()


@router.get("/history", response_model=List[AttendanceRecord])
async def get_attendance_history(
    kind: HistoryFilter = Query(
        HistoryFilter.ALL, alias="filter", description="all, check-in or check-out"
    ),
    kiosk: AttendanceKiosk = Depends(get_kiosk),
):
    """
    Newest first, capped for display.
    """
    return await kiosk.workflow.history(kind)


@router.get("/summary", response_model=DailySummary)
async def get_daily_summary(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    return await kiosk.workflow.daily_summary()


@router.post("/detector/reload")
async def reload_detector(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    method = await kiosk.reload_detector()
    return {"detection_method": method.value}


@router.post("/camera/start")
async def start_camera(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    if not await kiosk.start_camera():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cannot open the camera.",
        )
    return {"camera": "started"}


@router.post("/camera/stop")
async def stop_camera(kiosk: AttendanceKiosk = Depends(get_kiosk)):
    await kiosk.stop_camera()
    return {"camera": "stopped"}

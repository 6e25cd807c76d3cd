import asyncio
import contextlib
import ipaddress

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from attendance_kiosk.config import settings
from attendance_kiosk.dependencies import get_kiosk
from attendance_kiosk.events import event_to_dict
from attendance_kiosk.kiosk import AttendanceKiosk
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["events"])


def _is_loopback_client(websocket: WebSocket) -> bool:
    client = websocket.client
    if not client:
        return False
    host = client.host
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        await websocket.send_json(await queue.get())


@router.websocket("/events")
async def events_endpoint(websocket: WebSocket, kiosk: AttendanceKiosk = Depends(get_kiosk)):
    """Push presence, mode, advisory and attendance events to a viewer as JSON."""
    if settings.LOCAL_ONLY and not _is_loopback_client(websocket):
        await websocket.close(code=1008)
        return

    await websocket.accept()
    # Per-viewer queue keeps events in publish order
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = kiosk.bus.subscribe(lambda event: queue.put_nowait(event_to_dict(event)))
    sender = asyncio.create_task(_forward(websocket, queue))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Event viewer disconnected")
    finally:
        unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await sender

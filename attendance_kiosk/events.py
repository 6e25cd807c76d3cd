"""
Typed events emitted by the kiosk core.

The presentation layer (WebSocket viewers, logs) subscribes to an EventBus
and never reaches back into the core.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, List

from attendance_kiosk.schemas.attendance import (
    AttendanceRecord,
    AttendanceStatus,
    DetectionMethod,
)
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PresenceChanged:
    present: bool
    confidence: float
    method: DetectionMethod


@dataclass(frozen=True)
class ModeChanged:
    method: DetectionMethod
    reason: str


@dataclass(frozen=True)
class Advisory:
    message: str
    level: str = "info"  # info | success | warning | error


@dataclass(frozen=True)
class AttendanceRecorded:
    record: AttendanceRecord


@dataclass(frozen=True)
class StatusChanged:
    status: AttendanceStatus


@dataclass(frozen=True)
class NetworkChanged:
    online: bool


Event = Any
Subscriber = Callable[[Event], None]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        # Snapshot so a subscriber can unsubscribe while being called
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {type(event).__name__}")

    def advise(self, message: str, level: str = "info") -> None:
        self.publish(Advisory(message=message, level=level))


def event_to_dict(event: Event) -> dict:
    """JSON-ready form of an event for WebSocket viewers."""
    if isinstance(event, AttendanceRecorded):
        payload = {"record": event.record.model_dump(mode="json")}
    else:
        payload = {
            key: (value.value if hasattr(value, "value") else value)
            for key, value in asdict(event).items()
        }
    return {"event": type(event).__name__, **payload}

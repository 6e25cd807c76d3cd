import datetime
from typing import Awaitable, Callable, Iterable, List, Optional

from attendance_kiosk.events import AttendanceRecorded, EventBus, StatusChanged
from attendance_kiosk.exceptions import CaptureError, GatingError, GatingReason, PersistenceError
from attendance_kiosk.schemas.attendance import (
    AttendanceCreate,
    AttendanceRecord,
    AttendanceStatus,
    AttendanceType,
    DailySummary,
    HistoryFilter,
)
from attendance_kiosk.services.location import LocationTracker
from attendance_kiosk.services.presence import PresenceMonitor
from attendance_kiosk.services.store import AttendanceRecordStore
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

SnapshotCapture = Callable[[], Awaitable[str]]

_LABELS = {
    AttendanceType.CHECK_IN: "Check-in",
    AttendanceType.CHECK_OUT: "Check-out",
}


def local_now() -> datetime.datetime:
    return datetime.datetime.now().astimezone()


def local_day(moment: datetime.datetime) -> datetime.date:
    return moment.astimezone().date()


def records_on(records: Iterable[AttendanceRecord], day: datetime.date) -> List[AttendanceRecord]:
    return [record for record in records if local_day(record.timestamp) == day]


def derive_status(records: Iterable[AttendanceRecord], day: datetime.date) -> AttendanceStatus:
    """
    Status for `day`, computed from the records alone.

    The latest CHECK_IN wins unless a CHECK_OUT came after it. Repeated
    check-ins are not an error; they just move the latest check-in forward.
    """
    last_in: Optional[AttendanceRecord] = None
    last_out: Optional[AttendanceRecord] = None
    for record in records_on(records, day):
        if record.type == AttendanceType.CHECK_IN:
            if last_in is None or record.timestamp > last_in.timestamp:
                last_in = record
        elif last_out is None or record.timestamp > last_out.timestamp:
            last_out = record

    if last_in and (last_out is None or last_in.timestamp > last_out.timestamp):
        return AttendanceStatus.CHECKED_IN
    if last_out:
        return AttendanceStatus.CHECKED_OUT
    return AttendanceStatus.NOT_CHECKED_IN


class AttendanceWorkflow:
    """
    Check-in / check-out actions gated on face presence and a location fix.

    Presence, location and detection method are read once, synchronously,
    when an action starts; nothing between the gate and the capture can
    suspend, so no sample taken meanwhile changes the decision.
    """

    def __init__(
        self,
        store: AttendanceRecordStore,
        presence: PresenceMonitor,
        location: LocationTracker,
        bus: EventBus,
        capture_snapshot: SnapshotCapture,
        *,
        history_limit: int = 50,
        clock: Callable[[], datetime.datetime] = local_now,
    ):
        self.store = store
        self.presence = presence
        self.location = location
        self.bus = bus
        self.capture_snapshot = capture_snapshot
        self.history_limit = history_limit
        self._clock = clock
        self._status = AttendanceStatus.NOT_CHECKED_IN

    @property
    def status(self) -> AttendanceStatus:
        """Last known status, without touching the store."""
        return self._status

    def _today(self) -> datetime.date:
        return local_day(self._clock())

    async def recover_status(self) -> AttendanceStatus:
        try:
            records = await self.store.list_all()
        except PersistenceError:
            self.bus.advise("Could not read attendance history.", "error")
            return self._status

        self._set_status(derive_status(records, self._today()))
        logger.info(f"Recovered today's status: {self._status.value}")
        return self._status

    async def current_status(self) -> AttendanceStatus:
        try:
            records = await self.store.list_all()
        except PersistenceError:
            return self._status
        self._set_status(derive_status(records, self._today()))
        return self._status

    async def check_in(self) -> AttendanceRecord:
        return await self._record(AttendanceType.CHECK_IN)

    async def check_out(self) -> AttendanceRecord:
        return await self._record(AttendanceType.CHECK_OUT)

    async def _record(self, kind: AttendanceType) -> AttendanceRecord:
        label = _LABELS[kind]

        # Gate values are read before the first await
        present = self.presence.current_presence
        fix = self.location.latest()
        method = self.presence.active_method
        if not present:
            raise self._reject(GatingReason.NO_FACE, label)
        if fix is None:
            raise self._reject(GatingReason.NO_LOCATION, label)
        timestamp = self._clock()
        # The frame is copied before the snapshot first suspends
        snapshot = await self._take_snapshot()

        pending = AttendanceCreate(
            type=kind,
            timestamp=timestamp,
            location=fix,
            face_detected=present,
            snapshot_image=snapshot,
            detection_method=method,
        )

        self.bus.advise(f"Saving {label.lower()}...", "info")
        try:
            record_id = await self.store.append(pending)
        except PersistenceError:
            self.bus.advise(f"{label} could not be saved. Please try again.", "error")
            raise

        record = AttendanceRecord(id=record_id, **pending.model_dump())
        self._set_status(
            AttendanceStatus.CHECKED_IN
            if kind == AttendanceType.CHECK_IN
            else AttendanceStatus.CHECKED_OUT
        )
        logger.info(f"{label} #{record_id} recorded ({method.value})")
        self.bus.publish(AttendanceRecorded(record=record))
        self.bus.advise(
            f"{label} recorded at {record.timestamp.strftime('%H:%M:%S')}", "success"
        )
        return record

    def _reject(self, reason: GatingReason, label: str) -> GatingError:
        error = GatingError(reason)
        logger.info(f"{label} rejected: {reason.value}")
        self.bus.advise(error.message, "warning")
        return error

    async def _take_snapshot(self) -> Optional[str]:
        try:
            return await self.capture_snapshot()
        except CaptureError as exc:
            logger.warning(f"Snapshot failed, recording without image: {exc}")
            self.bus.advise("Could not capture a photo; saving without it.", "warning")
            return None

    def _set_status(self, status: AttendanceStatus) -> None:
        if status != self._status:
            self._status = status
            self.bus.publish(StatusChanged(status=status))

    async def history(self, filter: HistoryFilter = HistoryFilter.ALL) -> List[AttendanceRecord]:
        """Newest first, at most `history_limit` entries."""
        try:
            records = await self.store.list_all()
        except PersistenceError:
            self.bus.advise("Could not load attendance history.", "error")
            return []

        if filter != HistoryFilter.ALL:
            wanted = AttendanceType(filter.value)
            records = [record for record in records if record.type == wanted]
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records[: self.history_limit]

    async def daily_summary(self) -> DailySummary:
        today = self._today()
        try:
            records = records_on(await self.store.list_all(), today)
        except PersistenceError:
            self.bus.advise("Could not load today's summary.", "error")
            return DailySummary(date=today)

        check_ins = [r.timestamp for r in records if r.type == AttendanceType.CHECK_IN]
        check_outs = [r.timestamp for r in records if r.type == AttendanceType.CHECK_OUT]
        return DailySummary(
            date=today,
            first_check_in=min(check_ins) if check_ins else None,
            last_check_out=max(check_outs) if check_outs else None,
        )

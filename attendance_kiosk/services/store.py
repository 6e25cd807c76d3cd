import asyncio
import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_kiosk.exceptions import PersistenceError
from attendance_kiosk.models.attendance import AttendanceRecordRow
from attendance_kiosk.schemas.attendance import (
    AttendanceCreate,
    AttendanceRecord,
    AttendanceType,
    DetectionMethod,
    LocationFix,
)
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)


class AttendanceRecordStore:
    """
    Append-only collection of attendance records.

    There is no update or delete. Writes are serialised so ids
    follow invocation order, and a record is readable as soon as `append`
    returns.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._write_lock = asyncio.Lock()

    async def append(self, record: AttendanceCreate) -> int:
        row = AttendanceRecordRow(
            type=record.type.value,
            timestamp=record.timestamp.isoformat(),
            latitude=record.location.latitude,
            longitude=record.location.longitude,
            accuracy_meters=record.location.accuracy_meters,
            location_sampled_at=record.location.sampled_at.isoformat(),
            face_detected=record.face_detected,
            snapshot_image=record.snapshot_image,
            detection_method=record.detection_method.value,
        )

        async with self._write_lock:
            try:
                async with self.session_factory() as session:
                    session.add(row)
                    await session.commit()
            except SQLAlchemyError as exc:
                logger.error(f"Failed to append {record.type.value} record: {exc}")
                raise PersistenceError(f"Could not save attendance record: {exc}") from exc

        logger.info(f"Appended {record.type.value} record #{row.id} at {row.timestamp}")
        return row.id

    async def list_all(self) -> List[AttendanceRecord]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AttendanceRecordRow).order_by(AttendanceRecordRow.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.error(f"Failed to read attendance records: {exc}")
            raise PersistenceError(f"Could not read attendance records: {exc}") from exc

        return [self._to_record(row) for row in rows]

    async def count(self) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(AttendanceRecordRow)
                )
                return result.scalar_one()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not count attendance records: {exc}") from exc

    @staticmethod
    def _to_record(row: AttendanceRecordRow) -> AttendanceRecord:
        return AttendanceRecord(
            id=row.id,
            type=AttendanceType(row.type),
            timestamp=datetime.datetime.fromisoformat(row.timestamp),
            location=LocationFix(
                latitude=row.latitude,
                longitude=row.longitude,
                accuracy_meters=row.accuracy_meters,
                sampled_at=datetime.datetime.fromisoformat(row.location_sampled_at),
            ),
            face_detected=row.face_detected,
            snapshot_image=row.snapshot_image,
            detection_method=DetectionMethod(row.detection_method),
        )

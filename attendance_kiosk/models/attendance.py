from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin


class AttendanceRecordRow(Base, CreatedAtMixin):
    __tablename__ = "attendance_records"

    # AUTOINCREMENT keeps ids strictly increasing in insertion order
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # "check-in" or "check-out"
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    # ISO-8601 instant taken when the action was invoked, not when the write finished
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False, index=True)

    # Location fix cached at action time (may be older than timestamp)
    latitude: Mapped[float] = mapped_column(nullable=False)
    longitude: Mapped[float] = mapped_column(nullable=False)
    accuracy_meters: Mapped[float] = mapped_column(nullable=False)
    location_sampled_at: Mapped[str] = mapped_column(String(40), nullable=False)

    face_detected: Mapped[bool] = mapped_column(nullable=False)

    # data:image/jpeg;base64,... or NULL when the capture failed
    snapshot_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # "model" or "simulated"
    detection_method: Mapped[str] = mapped_column(String(16), nullable=False)

    __table_args__ = ({"sqlite_autoincrement": True},)

    def __repr__(self):
        return f"<AttendanceRecordRow(id={self.id}, type='{self.type}', timestamp='{self.timestamp}')>"

from .attendance import (
    AttendanceBase,
    AttendanceCreate,
    AttendanceRecord,
    AttendanceStatus,
    AttendanceType,
    BoundingBox,
    DailySummary,
    DetectionMethod,
    HistoryFilter,
    KioskStatus,
    LocationFix,
    PresenceSample,
)

__all__ = [
    "AttendanceBase",
    "AttendanceCreate",
    "AttendanceRecord",
    "AttendanceStatus",
    "AttendanceType",
    "BoundingBox",
    "DailySummary",
    "DetectionMethod",
    "HistoryFilter",
    "KioskStatus",
    "LocationFix",
    "PresenceSample",
]

import datetime
import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AttendanceType(str, enum.Enum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class DetectionMethod(str, enum.Enum):
    MODEL = "model"
    SIMULATED = "simulated"


class AttendanceStatus(str, enum.Enum):
    NOT_CHECKED_IN = "not_checked_in"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class HistoryFilter(str, enum.Enum):
    ALL = "all"
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


# --- Transient values ---
class LocationFix(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    accuracy_meters: float = Field(..., ge=0.0)
    sampled_at: datetime.datetime

    model_config = ConfigDict(frozen=True)


class BoundingBox(BaseModel):
    """Face region in source-frame pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    model_config = ConfigDict(frozen=True)


class PresenceSample(BaseModel):
    present: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    box: Optional[BoundingBox] = None

    model_config = ConfigDict(frozen=True)


# --- Base Schema ---
class AttendanceBase(BaseModel):
    type: AttendanceType
    timestamp: datetime.datetime
    location: LocationFix
    face_detected: bool
    snapshot_image: Optional[str] = None
    detection_method: DetectionMethod

    model_config = ConfigDict(frozen=True)


# --- Create Schema (Input) ---
class AttendanceCreate(AttendanceBase):
    pass


# --- Read Schema (Output) ---
class AttendanceRecord(AttendanceBase):
    id: int


class DailySummary(BaseModel):
    date: datetime.date
    first_check_in: Optional[datetime.datetime] = None
    last_check_out: Optional[datetime.datetime] = None


class KioskStatus(BaseModel):
    status: AttendanceStatus
    presence: bool
    confidence: float = 0.0
    detection_method: DetectionMethod
    location: Optional[LocationFix] = None
    location_stale: bool = True
    online: bool

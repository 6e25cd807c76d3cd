import enum


class AttendanceError(Exception):
    """Base class for every error raised by the kiosk core."""


class DetectionUnavailable(AttendanceError):
    """The model-backed detector cannot produce a sample (not loaded, no frame, inference failed)."""


class GatingReason(str, enum.Enum):
    NO_FACE = "no_face"
    NO_LOCATION = "no_location"


class GatingError(AttendanceError):
    """A check-in/out precondition did not hold. Nothing was written."""

    def __init__(self, reason: GatingReason, message: str | None = None):
        self.reason = reason
        self.message = message or _GATING_MESSAGES[reason]
        super().__init__(self.message)


_GATING_MESSAGES = {
    GatingReason.NO_FACE: "No face detected. Please face the camera first.",
    GatingReason.NO_LOCATION: "Location is not available yet. Please wait for a position fix.",
}


class PersistenceError(AttendanceError):
    """The record store rejected a read or write."""


class LocationError(AttendanceError):
    """A geolocation fix could not be acquired."""


class CaptureError(AttendanceError):
    """A snapshot could not be taken from the camera."""

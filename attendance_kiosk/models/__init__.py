from .base import Base
from .attendance import AttendanceRecordRow

# for wildcard imports
__all__ = ["Base", "AttendanceRecordRow"]

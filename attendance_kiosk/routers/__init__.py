from .attendance import router as attendance_router
from .events import router as events_router
from .health import router as health_router

# for wildcard imports
__all__ = ["attendance_router", "events_router", "health_router"]

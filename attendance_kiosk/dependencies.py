from fastapi.requests import HTTPConnection

from attendance_kiosk.kiosk import AttendanceKiosk


def get_kiosk(connection: HTTPConnection) -> AttendanceKiosk:
    """The single kiosk built by the app lifespan (works for HTTP and WebSocket routes)."""
    return connection.app.state.kiosk

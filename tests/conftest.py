import pytest

from attendance_kiosk.database import build_engine, build_session_factory, create_tables
from attendance_kiosk.events import EventBus
from attendance_kiosk.services.store import AttendanceRecordStore

from fakes import VirtualClock


class EventRecorder:
    def __init__(self, bus: EventBus):
        self.events = []
        bus.subscribe(self.events.append)

    def of(self, kind):
        return [event for event in self.events if isinstance(event, kind)]


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'attendance.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return AttendanceRecordStore(build_session_factory(engine))


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def clock():
    return VirtualClock()

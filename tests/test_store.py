import pytest

from attendance_kiosk.database import build_engine, build_session_factory
from attendance_kiosk.exceptions import PersistenceError
from attendance_kiosk.schemas.attendance import AttendanceType, DetectionMethod
from attendance_kiosk.services.store import AttendanceRecordStore

from fakes import at, make_create


async def test_append_is_readable_immediately(store):
    for hour in (9, 12, 17):
        record_id = await store.append(make_create(AttendanceType.CHECK_IN, at(hour)))
        ids = [record.id for record in await store.list_all()]
        assert record_id in ids


async def test_ids_increase_in_insertion_order(store):
    first = await store.append(make_create(AttendanceType.CHECK_IN, at(17)))
    second = await store.append(make_create(AttendanceType.CHECK_OUT, at(9)))
    third = await store.append(make_create(AttendanceType.CHECK_IN, at(12)))

    assert first < second < third
    assert [r.id for r in await store.list_all()] == [first, second, third]


async def test_record_fields_survive_storage(store):
    pending = make_create(
        AttendanceType.CHECK_OUT,
        at(17, 30),
        snapshot="data:image/jpeg;base64,/9j/4AAQ",
        method=DetectionMethod.SIMULATED,
    )
    record_id = await store.append(pending)

    [record] = await store.list_all()
    assert record.id == record_id
    assert record.type == AttendanceType.CHECK_OUT
    assert record.timestamp == pending.timestamp
    assert record.timestamp.utcoffset() == pending.timestamp.utcoffset()
    assert record.location == pending.location
    assert record.face_detected is True
    assert record.snapshot_image == "data:image/jpeg;base64,/9j/4AAQ"
    assert record.detection_method == DetectionMethod.SIMULATED


async def test_missing_snapshot_is_stored_as_null(store):
    await store.append(make_create(AttendanceType.CHECK_IN, at(9), snapshot=None))
    [record] = await store.list_all()
    assert record.snapshot_image is None


async def test_count(store):
    assert await store.count() == 0
    await store.append(make_create(AttendanceType.CHECK_IN, at(9)))
    await store.append(make_create(AttendanceType.CHECK_OUT, at(17)))
    assert await store.count() == 2


async def test_engine_errors_become_persistence_errors(tmp_path):
    # No tables were created
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = AttendanceRecordStore(build_session_factory(engine))
    try:
        with pytest.raises(PersistenceError):
            await store.append(make_create(AttendanceType.CHECK_IN, at(9)))
        with pytest.raises(PersistenceError):
            await store.list_all()
    finally:
        await engine.dispose()

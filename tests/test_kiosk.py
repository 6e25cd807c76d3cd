import pytest

from attendance_kiosk.events import Advisory, ModeChanged, NetworkChanged
from attendance_kiosk.schemas.attendance import AttendanceStatus, DetectionMethod
from attendance_kiosk.services.camera import CameraStream

from fakes import SOURCES, FakeCamera, FakeCapture, Network, RecordingFetch, build_kiosk, eventually, make_fix


@pytest.fixture
def network():
    return Network()


async def test_second_model_source_is_used_when_first_fails(store, bus, recorder, clock, network):
    fetch = RecordingFetch(failing={"models/det_500m.onnx"})
    kiosk = build_kiosk(store, bus, clock, fetch, network)

    await kiosk.start()
    await kiosk._load_task

    assert fetch.calls == ["models/det_500m.onnx", "https://models.example/buffalo_s.zip"]
    assert kiosk.presence.active_method == DetectionMethod.MODEL
    assert [e.method for e in recorder.of(ModeChanged)] == [DetectionMethod.MODEL]

    await clock.advance(1.0)
    await eventually(lambda: kiosk.presence.current_presence)

    record = await kiosk.workflow.check_in()
    assert record.detection_method == DetectionMethod.MODEL
    await kiosk.stop()


async def test_all_sources_failing_leaves_simulation(store, bus, recorder, clock, network):
    fetch = RecordingFetch(failing=SOURCES)
    kiosk = build_kiosk(store, bus, clock, fetch, network, SIMULATED_PRESENCE_PROBABILITY=1.0)

    await kiosk.start()
    await kiosk._load_task

    assert len(fetch.calls) == 2
    assert kiosk.presence.active_method == DetectionMethod.SIMULATED
    assert recorder.of(ModeChanged) == []
    assert any("simulation" in a.message for a in recorder.of(Advisory))

    await clock.advance(1.0)
    assert kiosk.presence.current_presence is True

    record = await kiosk.workflow.check_in()
    assert record.detection_method == DetectionMethod.SIMULATED
    await kiosk.stop()


async def test_offline_start_skips_loading_until_network_returns(store, bus, recorder, clock):
    network = Network(online=False)
    fetch = RecordingFetch()
    kiosk = build_kiosk(store, bus, clock, fetch, network)

    await kiosk.start()

    assert fetch.calls == []
    assert kiosk._load_task is None
    assert kiosk.presence.active_method == DetectionMethod.SIMULATED
    assert await kiosk.reload_detector() == DetectionMethod.SIMULATED
    assert fetch.calls == []

    network.online = True
    await clock.advance(30.0)
    await eventually(lambda: kiosk._load_task is not None)
    await kiosk._load_task

    assert [e.online for e in recorder.of(NetworkChanged)] == [True]
    assert fetch.calls == ["models/det_500m.onnx"]
    assert kiosk.presence.active_method == DetectionMethod.MODEL
    await kiosk.stop()


async def test_losing_the_network_is_announced(store, bus, recorder, clock, network):
    kiosk = build_kiosk(store, bus, clock, RecordingFetch(), network, CAMERA_AUTOSTART=False)
    await kiosk.start()
    await kiosk._load_task

    network.online = False
    await clock.advance(30.0)
    await eventually(lambda: not kiosk.connectivity.is_online)

    assert recorder.of(NetworkChanged)[-1].online is False
    assert "Internet connection lost" in recorder.of(Advisory)[-1].message
    # The loaded model keeps running offline
    assert kiosk.presence.active_method == DetectionMethod.MODEL
    await kiosk.stop()


async def test_camera_that_cannot_open(store, bus, recorder, clock, network):
    kiosk = build_kiosk(store, bus, clock, RecordingFetch(), network, camera=FakeCamera(fail_open=True))

    await kiosk.start()

    assert not kiosk.presence.running
    assert recorder.of(Advisory)[-1].level == "error"
    assert await kiosk.start_camera() is False
    await kiosk.stop()


async def test_stopping_the_camera_drops_presence(store, bus, clock, network):
    kiosk = build_kiosk(
        store, bus, clock, RecordingFetch(failing=SOURCES), network,
        SIMULATED_PRESENCE_PROBABILITY=1.0,
    )
    await kiosk.start()
    await kiosk._load_task
    await clock.advance(1.0)
    assert kiosk.presence.current_presence is True
    assert (await kiosk.status()).confidence == 1.0

    await kiosk.stop_camera()

    assert kiosk.presence.current_presence is False
    assert (await kiosk.status()).confidence == 0.0
    assert not kiosk.presence.running
    assert not kiosk.camera.is_open
    await kiosk.stop()


async def test_stop_cancels_every_schedule(store, bus, clock, network):
    kiosk = build_kiosk(store, bus, clock, RecordingFetch(), network)
    await kiosk.start()
    await kiosk._load_task

    await kiosk.stop()

    assert not kiosk.presence.running
    assert not kiosk.location.running
    assert clock.pending == 0


async def test_status_reflects_components(store, bus, clock, network):
    kiosk = build_kiosk(store, bus, clock, RecordingFetch(), network, CAMERA_AUTOSTART=False)
    await kiosk.start()
    await kiosk._load_task
    await clock.advance(0)

    snapshot = await kiosk.status()

    assert snapshot.status == AttendanceStatus.NOT_CHECKED_IN
    assert snapshot.presence is False
    assert snapshot.detection_method == DetectionMethod.MODEL
    assert snapshot.location == make_fix()
    # The fix was sampled hours ago
    assert snapshot.location_stale is True
    assert snapshot.confidence == 0.0
    assert snapshot.online is True
    await kiosk.stop()


async def test_restarted_camera_keeps_model_detection(store, bus, recorder, clock, network):
    captures = [FakeCapture(), FakeCapture()]
    camera = CameraStream(0, capture_factory=lambda src: captures.pop(0))
    kiosk = build_kiosk(
        store, bus, clock, RecordingFetch(failing={"models/det_500m.onnx"}), network, camera=camera
    )
    await kiosk.start()
    await kiosk._load_task

    await kiosk.stop_camera()
    assert await kiosk.start_camera() is True
    await clock.advance(0.5)
    await eventually(lambda: kiosk.presence.last_sample is not None)

    assert kiosk.presence.active_method == DetectionMethod.MODEL
    assert [e.method for e in recorder.of(ModeChanged)] == [DetectionMethod.MODEL]
    await kiosk.stop()


async def test_stop_camera_closes_a_camera_that_died(store, bus, clock, network):
    capture = FakeCapture(frames=2)
    camera = CameraStream(0, capture_factory=lambda src: capture)
    kiosk = build_kiosk(store, bus, clock, RecordingFetch(), network, camera=camera)
    await kiosk.start()
    await eventually(lambda: not camera.is_open)

    await kiosk.stop_camera()

    assert capture.released
    assert camera.read() is None
    assert not kiosk.presence.running
    await kiosk.stop()

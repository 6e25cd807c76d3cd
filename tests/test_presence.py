from attendance_kiosk.events import ModeChanged, PresenceChanged
from attendance_kiosk.exceptions import DetectionUnavailable
from attendance_kiosk.schemas.attendance import DetectionMethod
from attendance_kiosk.services.presence import PresenceMonitor

from fakes import ScriptedProvider


def build_monitor(bus, clock, provider, fallback=None):
    return PresenceMonitor(
        provider,
        lambda: "frame",
        bus,
        fallback=fallback or ScriptedProvider([True], method=DetectionMethod.SIMULATED),
        model_interval=0.5,
        simulated_interval=1.0,
        sleep=clock.sleep,
    )


async def test_only_transitions_are_published(bus, recorder, clock):
    provider = ScriptedProvider([False, False, True, True, False])
    monitor = build_monitor(bus, clock, provider)

    monitor.start()
    await clock.advance(2.5)
    await monitor.stop()

    assert provider.calls == 5
    changes = recorder.of(PresenceChanged)
    assert [event.present for event in changes] == [True, False]
    assert monitor.current_presence is False


async def test_same_state_samples_only_refresh_last_sample(bus, recorder, clock):
    provider = ScriptedProvider([True, True, True])
    monitor = build_monitor(bus, clock, provider)

    monitor.start()
    await clock.advance(1.5)
    await monitor.stop()

    assert len(recorder.of(PresenceChanged)) == 1
    assert monitor.last_sample.present is True
    assert monitor.current_presence is True
    assert monitor.confidence == 0.9


async def test_presence_starts_false_and_first_sample_waits_one_interval(bus, clock):
    provider = ScriptedProvider([True])
    monitor = build_monitor(bus, clock, provider)

    monitor.start()
    await clock.advance(0.4)
    assert provider.calls == 0
    assert monitor.current_presence is False

    await clock.advance(0.1)
    assert provider.calls == 1
    assert monitor.current_presence is True
    await monitor.stop()


async def test_stop_cancels_pending_samples(bus, recorder, clock):
    provider = ScriptedProvider([True, False, True, False])
    monitor = build_monitor(bus, clock, provider)

    monitor.start()
    await clock.advance(0.5)
    await monitor.stop()
    events_at_stop = len(recorder.events)

    await clock.advance(10)

    assert provider.calls == 1
    assert len(recorder.events) == events_at_stop
    assert not monitor.running
    assert clock.pending == 0


async def test_model_failure_switches_to_simulation(bus, recorder, clock):
    provider = ScriptedProvider([True, DetectionUnavailable("Face inference failed")])
    fallback = ScriptedProvider([True, False], method=DetectionMethod.SIMULATED)
    monitor = build_monitor(bus, clock, provider, fallback=fallback)

    monitor.start()
    await clock.advance(1.0)

    [mode] = recorder.of(ModeChanged)
    assert mode.method == DetectionMethod.SIMULATED
    assert monitor.active_method == DetectionMethod.SIMULATED
    assert monitor.active_provider is fallback

    # Simulated cadence is one second
    await clock.advance(0.5)
    assert fallback.calls == 0
    await clock.advance(0.5)
    assert fallback.calls == 1
    await clock.advance(1.0)
    assert fallback.calls == 2
    await monitor.stop()

    assert [e.present for e in recorder.of(PresenceChanged)] == [True, False]
    assert [e.method for e in recorder.of(PresenceChanged)] == [
        DetectionMethod.MODEL,
        DetectionMethod.SIMULATED,
    ]


async def test_unexpected_errors_do_not_end_the_loop(bus, clock):
    provider = ScriptedProvider(
        [RuntimeError("boom"), True, False], method=DetectionMethod.SIMULATED
    )
    monitor = build_monitor(bus, clock, provider, fallback=provider)

    monitor.start()
    await clock.advance(3.0)
    await monitor.stop()

    assert provider.calls == 3
    assert monitor.current_presence is False


async def test_use_provider_announces_only_real_mode_changes(bus, recorder, clock):
    monitor = build_monitor(bus, clock, ScriptedProvider([False]))

    monitor.use_provider(ScriptedProvider([True]), reason="reloaded")
    assert recorder.of(ModeChanged) == []

    monitor.use_provider(ScriptedProvider([True], method=DetectionMethod.SIMULATED), reason="offline")
    monitor.use_provider(ScriptedProvider([True]), reason="model loaded")
    assert [e.method for e in recorder.of(ModeChanged)] == [
        DetectionMethod.SIMULATED,
        DetectionMethod.MODEL,
    ]


async def test_reset_drops_presence(bus, recorder, clock):
    monitor = build_monitor(bus, clock, ScriptedProvider([True]))
    monitor.start()
    await clock.advance(0.5)
    await monitor.stop()

    monitor.reset()

    assert monitor.current_presence is False
    assert monitor.confidence == 0.0
    assert [e.present for e in recorder.of(PresenceChanged)] == [True, False]

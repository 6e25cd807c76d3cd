import asyncio
from typing import Any, Callable, Optional

from attendance_kiosk.events import EventBus, ModeChanged, PresenceChanged
from attendance_kiosk.scheduling import PeriodicTask, Sleep
from attendance_kiosk.schemas.attendance import DetectionMethod, PresenceSample
from attendance_kiosk.services.detection import DetectionProvider, SimulatedDetector
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

FrameSource = Callable[[], Any]


class PresenceMonitor:
    """
    Samples the active detection provider on a fixed cadence and publishes
    PresenceChanged only when the presence flag actually flips.

    A failing model provider is swapped for the simulated one; the swap is
    announced with ModeChanged so the UI can show simulation mode.
    """

    def __init__(
        self,
        provider: DetectionProvider,
        frame_source: FrameSource,
        bus: EventBus,
        *,
        fallback: Optional[DetectionProvider] = None,
        model_interval: float = 0.5,
        simulated_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.bus = bus
        self.frame_source = frame_source
        self.fallback = fallback or SimulatedDetector()
        self.model_interval = model_interval
        self.simulated_interval = simulated_interval

        self.current_presence = False
        self.last_sample: Optional[PresenceSample] = None
        self.active_provider = provider

        self._stopped = True
        self._task = PeriodicTask(
            self._sample_once,
            self._interval_for(provider),
            sleep=sleep,
            name="presence-monitor",
        )

    @property
    def active_method(self) -> DetectionMethod:
        return self.active_provider.method

    @property
    def confidence(self) -> float:
        """Confidence of the latest sample, refreshed even when presence did not flip."""
        return self.last_sample.confidence if self.last_sample else 0.0

    @property
    def running(self) -> bool:
        return self._task.running

    def _interval_for(self, provider: DetectionProvider) -> float:
        if provider.method == DetectionMethod.MODEL:
            return self.model_interval
        return self.simulated_interval

    def start(self) -> None:
        self._stopped = False
        self._task.start()
        logger.info(f"Presence monitor started ({self.active_method.value})")

    async def stop(self) -> None:
        self._stopped = True
        await self._task.stop()
        logger.info("Presence monitor stopped")

    def use_provider(self, provider: DetectionProvider, reason: str) -> None:
        """Swap the active provider; takes effect from the next cycle."""
        changed = provider.method != self.active_method
        self.active_provider = provider
        self._task.interval = self._interval_for(provider)
        if changed:
            logger.info(f"Detection mode -> {provider.method.value} ({reason})")
            self.bus.publish(ModeChanged(method=provider.method, reason=reason))

    def reset(self) -> None:
        """Drop presence, e.g. when the camera goes away."""
        self.last_sample = None
        if self.current_presence:
            self.current_presence = False
            self.bus.publish(
                PresenceChanged(present=False, confidence=0.0, method=self.active_method)
            )

    async def _sample_once(self) -> None:
        provider = self.active_provider
        try:
            sample = await provider.sample(self.frame_source())
        except Exception as exc:
            if self._stopped:
                return
            if provider.method == DetectionMethod.MODEL:
                logger.warning(f"Face detection failed, switching to simulation: {exc}")
                self.use_provider(self.fallback, reason=str(exc))
            else:
                logger.exception("Simulated presence sample failed")
            return

        # stop() may have landed while the sample was in flight
        if self._stopped or provider is not self.active_provider:
            return

        self.last_sample = sample
        if sample.present != self.current_presence:
            self.current_presence = sample.present
            logger.debug(
                f"Presence -> {sample.present} ({sample.confidence:.2f}, {provider.method.value})"
            )
            self.bus.publish(
                PresenceChanged(
                    present=sample.present,
                    confidence=sample.confidence,
                    method=provider.method,
                )
            )

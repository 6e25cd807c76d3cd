import asyncio
import datetime
from typing import Callable, Optional, Protocol

import httpx

from attendance_kiosk.events import EventBus
from attendance_kiosk.exceptions import LocationError
from attendance_kiosk.scheduling import PeriodicTask, Sleep
from attendance_kiosk.schemas.attendance import LocationFix
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class GeolocationSource(Protocol):
    async def acquire(
        self, high_accuracy: bool, timeout: float, max_age: float
    ) -> LocationFix: ...


class StaticGeolocation:
    """Fixed position for a kiosk that never moves."""

    def __init__(self, latitude: float, longitude: float, accuracy_meters: float, clock: Clock = utc_now):
        self.latitude = latitude
        self.longitude = longitude
        self.accuracy_meters = accuracy_meters
        self._clock = clock

    async def acquire(self, high_accuracy: bool, timeout: float, max_age: float) -> LocationFix:
        return LocationFix(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy_meters=self.accuracy_meters,
            sampled_at=self._clock(),
        )


class HttpGeolocation:
    """
    Reads a position from a JSON endpoint.

    Accepts `latitude`/`longitude` (or `lat`/`lon`) and an optional
    `accuracy`. A previous answer younger than `max_age` is reused instead of
    hitting the endpoint again. The endpoint decides its own precision, so
    `high_accuracy` is only passed along as a query hint.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, default_accuracy: float = 5000.0, clock: Clock = utc_now):
        self.client = client
        self.url = url
        self.default_accuracy = default_accuracy
        self._clock = clock
        self._cached: Optional[LocationFix] = None

    async def acquire(self, high_accuracy: bool, timeout: float, max_age: float) -> LocationFix:
        now = self._clock()
        if self._cached and (now - self._cached.sampled_at).total_seconds() < max_age:
            return self._cached

        try:
            response = await self.client.get(
                self.url,
                params={"high_accuracy": str(high_accuracy).lower()},
                timeout=timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LocationError(f"Geolocation lookup failed: {exc}") from exc

        latitude = payload.get("latitude", payload.get("lat"))
        longitude = payload.get("longitude", payload.get("lon"))
        if latitude is None or longitude is None:
            raise LocationError("Geolocation response has no coordinates")

        self._cached = LocationFix(
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy_meters=float(payload.get("accuracy", self.default_accuracy)),
            sampled_at=now,
        )
        return self._cached


class UnavailableGeolocation:
    """Used when no geolocation source is configured."""

    async def acquire(self, high_accuracy: bool, timeout: float, max_age: float) -> LocationFix:
        raise LocationError("No geolocation source configured")


class LocationTracker:
    """
    Keeps the most recent location fix.

    The fix is re-acquired on start and then every `refresh_interval`
    seconds whether or not anyone asked for it. A failed acquisition keeps
    the previous fix and posts an advisory instead of raising.
    """

    def __init__(
        self,
        source: GeolocationSource,
        bus: EventBus,
        *,
        timeout: float = 10.0,
        max_age: float = 300.0,
        refresh_interval: float = 300.0,
        high_accuracy: bool = True,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ):
        self.source = source
        self.bus = bus
        self.timeout = timeout
        self.max_age = max_age
        self.high_accuracy = high_accuracy
        self._clock = clock
        self._latest: Optional[LocationFix] = None
        self._task = PeriodicTask(
            self.refresh,
            refresh_interval,
            sleep=sleep,
            run_immediately=True,
            name="location-refresh",
        )

    def latest(self) -> Optional[LocationFix]:
        return self._latest

    def is_stale(self) -> bool:
        if self._latest is None:
            return True
        age = (self._clock() - self._latest.sampled_at).total_seconds()
        return age >= self.max_age

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def refresh(self) -> Optional[LocationFix]:
        try:
            fix = await asyncio.wait_for(
                self.source.acquire(
                    high_accuracy=self.high_accuracy,
                    timeout=self.timeout,
                    max_age=self.max_age,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self._report_failure(LocationError(f"Location timed out after {self.timeout}s"))
            return self._latest
        except LocationError as exc:
            self._report_failure(exc)
            return self._latest
        except Exception as exc:
            self._report_failure(LocationError(str(exc)))
            return self._latest

        self._latest = fix
        logger.info(
            f"Location fix {fix.latitude:.6f}, {fix.longitude:.6f} (±{round(fix.accuracy_meters)} m)"
        )
        return fix

    def _report_failure(self, error: LocationError) -> None:
        kept = "keeping previous fix" if self._latest else "no fix yet"
        logger.warning(f"Location error: {error} ({kept})")
        self.bus.advise(
            "Unable to determine location. Please enable location services.", "warning"
        )

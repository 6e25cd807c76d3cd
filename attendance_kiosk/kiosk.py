"""
Composition root: builds every kiosk component once and owns their
start/stop lifecycle. The host application (FastAPI lifespan, scripts)
creates exactly one AttendanceKiosk.
"""
import asyncio
import random
from typing import Any, Callable, List, Optional, Protocol, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_kiosk.config import Settings
from attendance_kiosk.events import EventBus, NetworkChanged
from attendance_kiosk.scheduling import Sleep, cancel_and_wait
from attendance_kiosk.schemas.attendance import DetectionMethod, KioskStatus
from attendance_kiosk.services.camera import CameraStream
from attendance_kiosk.services.detection import (
    Loaded,
    ModelFetch,
    ModelFetcher,
    SimulatedDetector,
    create_provider,
    load_model,
)
from attendance_kiosk.services.location import (
    GeolocationSource,
    HttpGeolocation,
    LocationTracker,
    StaticGeolocation,
    UnavailableGeolocation,
)
from attendance_kiosk.services.network import ConnectivityMonitor
from attendance_kiosk.services.presence import PresenceMonitor
from attendance_kiosk.services.store import AttendanceRecordStore
from attendance_kiosk.services.workflow import AttendanceWorkflow, local_now
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)


class Camera(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    def read(self) -> Any: ...

    async def snapshot(self) -> str: ...


class AttendanceKiosk:
    def __init__(
        self,
        *,
        store: AttendanceRecordStore,
        camera: Camera,
        geolocation: GeolocationSource,
        connectivity: ConnectivityMonitor,
        fetch_model: ModelFetch,
        settings: Settings,
        bus: EventBus,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable = local_now,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.bus = bus
        self.store = store
        self.camera = camera
        self.connectivity = connectivity
        self.fetch_model = fetch_model
        self.model_sources: Sequence[str] = list(settings.MODEL_SOURCES)
        self._rng = rng or random.Random()
        self._http_client = http_client

        # Simulation until a model source has loaded
        simulated = SimulatedDetector(settings.SIMULATED_PRESENCE_PROBABILITY, rng=self._rng)
        self.presence = PresenceMonitor(
            simulated,
            camera.read,
            self.bus,
            fallback=simulated,
            model_interval=settings.MODEL_SAMPLE_INTERVAL_SECONDS,
            simulated_interval=settings.SIMULATED_SAMPLE_INTERVAL_SECONDS,
            sleep=sleep,
        )
        self.location = LocationTracker(
            geolocation,
            self.bus,
            timeout=settings.LOCATION_TIMEOUT_SECONDS,
            max_age=settings.LOCATION_MAX_AGE_SECONDS,
            refresh_interval=settings.LOCATION_REFRESH_SECONDS,
            high_accuracy=settings.LOCATION_HIGH_ACCURACY,
            sleep=sleep,
        )
        self.workflow = AttendanceWorkflow(
            store,
            self.presence,
            self.location,
            self.bus,
            camera.snapshot,
            history_limit=settings.HISTORY_LIMIT,
            clock=clock,
        )

        self._load_task: Optional[asyncio.Task] = None
        self._unsubscribe: List[Callable[[], None]] = []

    @classmethod
    def from_settings(
        cls, settings: Settings, session_factory: async_sessionmaker[AsyncSession]
    ) -> "AttendanceKiosk":
        client = httpx.AsyncClient(timeout=settings.MODEL_LOAD_TIMEOUT_SECONDS)
        bus = EventBus()

        if settings.STATIC_LATITUDE is not None and settings.STATIC_LONGITUDE is not None:
            geolocation: GeolocationSource = StaticGeolocation(
                settings.STATIC_LATITUDE,
                settings.STATIC_LONGITUDE,
                settings.STATIC_ACCURACY_METERS,
            )
        elif settings.GEOLOCATION_URL:
            geolocation = HttpGeolocation(client, settings.GEOLOCATION_URL)
        else:
            geolocation = UnavailableGeolocation()

        return cls(
            store=AttendanceRecordStore(session_factory),
            camera=CameraStream(
                settings.CAMERA_INDEX, jpeg_quality=settings.SNAPSHOT_JPEG_QUALITY
            ),
            geolocation=geolocation,
            connectivity=ConnectivityMonitor(
                client,
                settings.CONNECTIVITY_CHECK_URL,
                bus,
                interval=settings.CONNECTIVITY_CHECK_SECONDS,
                timeout=settings.CONNECTIVITY_TIMEOUT_SECONDS,
            ),
            fetch_model=ModelFetcher(
                client,
                settings.MODEL_CACHE_DIR,
                input_size=settings.DETECTION_INPUT_SIZE,
                min_confidence=settings.MIN_DETECTION_CONFIDENCE,
            ),
            settings=settings,
            bus=bus,
            http_client=client,
        )

    # --- Lifecycle ---
    async def start(self, start_camera: Optional[bool] = None) -> None:
        await self.workflow.recover_status()

        online = await self.connectivity.check()
        self._unsubscribe.append(self.bus.subscribe(self._on_event))
        self.connectivity.start()
        if online:
            self._schedule_reload()
        else:
            self.bus.advise("No internet connection, using simulation mode.", "warning")

        self.location.start()

        if start_camera is None:
            start_camera = self.settings.CAMERA_AUTOSTART
        if start_camera:
            await self.start_camera()
        logger.info("Attendance kiosk started")

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

        if self._load_task is not None:
            await cancel_and_wait(self._load_task)
        self._load_task = None

        await self.stop_camera()
        await self.location.stop()
        await self.connectivity.stop()
        if self._http_client is not None:
            await self._http_client.aclose()
        logger.info("Attendance kiosk stopped")

    async def start_camera(self) -> bool:
        try:
            await self.camera.open()
        except Exception as exc:
            logger.error(f"Camera error: {exc}")
            self.bus.advise("Cannot open the camera. Please check camera permissions.", "error")
            return False
        self.presence.start()
        self.bus.advise("Camera started.", "success")
        return True

    async def stop_camera(self) -> None:
        await self.presence.stop()
        self.presence.reset()
        # A camera that died on its own still holds the device until closed
        await self.camera.close()

    # --- Detector ---
    async def reload_detector(self) -> DetectionMethod:
        if not self.connectivity.is_online:
            self.bus.advise("No internet connection, using simulation mode.", "warning")
            return self.presence.active_method

        self.bus.advise("Loading face detection model...", "info")
        result = await load_model(
            self.model_sources, self.fetch_model, self.settings.MODEL_LOAD_TIMEOUT_SECONDS
        )
        if isinstance(result, Loaded):
            provider = create_provider(
                result, min_confidence=self.settings.MIN_DETECTION_CONFIDENCE
            )
            self.presence.use_provider(provider, reason=f"model loaded from {result.source}")
            self.bus.advise("Face detection ready.", "success")
        else:
            self.presence.use_provider(self.presence.fallback, reason="all model sources failed")
            self.bus.advise("Face detection could not be loaded, using simulation mode.", "warning")
        return self.presence.active_method

    def _schedule_reload(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            return
        self._load_task = asyncio.create_task(self.reload_detector(), name="detector-reload")

    def _on_event(self, event: Any) -> None:
        if not isinstance(event, NetworkChanged):
            return
        if event.online:
            if self.presence.active_method != DetectionMethod.MODEL:
                self.bus.advise("Back online, reloading face detection...", "info")
                self._schedule_reload()
        else:
            self.bus.advise("Internet connection lost, simulation mode will be used.", "warning")

    # --- Read side ---
    async def status(self) -> KioskStatus:
        return KioskStatus(
            status=await self.workflow.current_status(),
            presence=self.presence.current_presence,
            confidence=self.presence.confidence,
            detection_method=self.presence.active_method,
            location=self.location.latest(),
            location_stale=self.location.is_stale(),
            online=self.connectivity.is_online,
        )

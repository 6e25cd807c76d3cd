import asyncio

import httpx

from attendance_kiosk.events import EventBus, NetworkChanged
from attendance_kiosk.scheduling import PeriodicTask, Sleep
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)


class ConnectivityMonitor:
    """
    Online/offline signal from periodically probing a URL.

    `start()` only schedules later checks; call `check()` first for an
    immediate answer.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        check_url: str,
        bus: EventBus,
        *,
        interval: float = 30.0,
        timeout: float = 5.0,
        online: bool = False,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.check_url = check_url
        self.bus = bus
        self.timeout = timeout
        self._online = online
        self._task = PeriodicTask(
            self.check,
            interval,
            sleep=sleep,
            name="connectivity-check",
        )

    @property
    def is_online(self) -> bool:
        return self._online

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def check(self) -> bool:
        try:
            response = await self.client.head(
                self.check_url, timeout=self.timeout, follow_redirects=True
            )
            online = response.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug(f"Connectivity check failed: {exc}")
            online = False
        self.set_online(online)
        return online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Network is online" if online else "Network is offline")
        self.bus.publish(NetworkChanged(online=online))

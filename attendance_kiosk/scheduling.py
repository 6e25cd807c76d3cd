import asyncio
from typing import Awaitable, Callable, Optional

from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def cancel_and_wait(task: asyncio.Task, poll: float = 0.05) -> None:
    """
    Cancel `task` and wait until it has finished.

    A cancel can be absorbed on Python < 3.12 when `asyncio.wait_for` sees its
    inner call complete in the same loop pass, so the cancel is repeated
    until the task is done.
    """
    while not task.done():
        task.cancel()
        await asyncio.wait({task}, timeout=poll)
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"{task.get_name()} ended with {task.exception()!r}")


class PeriodicTask:
    """
    Runs an async callback every `interval` seconds on the running loop.

    `sleep` is injectable so tests can drive the task with a virtual clock.
    The interval is re-read before every wait, so it can be changed while
    the task runs. After `stop()` returns the callback never runs again.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        *,
        sleep: Sleep = asyncio.sleep,
        run_immediately: bool = False,
        name: str = "periodic-task",
    ):
        self.callback = callback
        self.interval = interval
        self.name = name
        self._sleep = sleep
        self._run_immediately = run_immediately
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        await cancel_and_wait(task)

    async def _loop(self) -> None:
        if self._run_immediately:
            await self._tick()
        while not self._stopping:
            await self._sleep(self.interval)
            if self._stopping:
                break
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            # One bad cycle must not kill the schedule
            logger.exception(f"{self.name} cycle failed")

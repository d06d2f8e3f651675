"""
Base class for in-process periodic background tasks.

Only one instance of each task class may run per process: a second
`start()` raises RuntimeError instead of doubling the work.
"""
import asyncio
from typing import ClassVar

from app.logging_config import get_logger
from app.routes.metrics import track_background_error
from app.sentry_config import capture_exception


class PeriodicTask:
    """Runs `run_once` every `interval` seconds on the event loop."""

    name: ClassVar[str] = "periodic_task"
    _active: ClassVar[dict[type, "PeriodicTask"]] = {}

    def __init__(self, interval: float):
        self.interval = interval
        self._task: asyncio.Task | None = None
        self.log = get_logger(component=self.name)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        owner = PeriodicTask._active.get(type(self))
        if owner is not None and owner.running:
            raise RuntimeError(f"{type(self).__name__} is already running in this process")

        PeriodicTask._active[type(self)] = self
        self._task = asyncio.create_task(self._loop(), name=self.name)
        self.log.info("periodic_task_started", interval=self.interval)

    async def stop(self):
        if PeriodicTask._active.get(type(self)) is self:
            del PeriodicTask._active[type(self)]

        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.log.info("periodic_task_stopped")

    async def run_once(self):
        raise NotImplementedError

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # A failing tick must not kill the loop
                self.log.exception("periodic_task_tick_failed")
                track_background_error(self.name)
                capture_exception()
            await asyncio.sleep(self.interval)

"""
One-shot completion listeners keyed by (kind, job id).
"""
import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable

from app.logging_config import get_logger
from app.models.job import Job, JobKind


log = get_logger(component="listener_registry")

Listener = Callable[[Job], Any]


class ListenerRegistry:
    """
    Lets callers wait for "job X reached a terminal state".

    `fire` is called by the reconciler after the commit that made the job
    terminal. The key is removed before any callback runs, so each listener
    runs at most once even if a duplicate signal follows.
    """

    def __init__(self):
        self._listeners: dict[tuple[JobKind, str], list[Listener]] = defaultdict(list)

    def on_complete(self, kind: JobKind, job_id: str, callback: Listener):
        """Register a one-shot callback (sync function or coroutine function)."""
        self._listeners[(kind, job_id)].append(callback)

    def cancel(self, kind: JobKind, job_id: str, callback: Listener):
        """Remove a callback that has not fired yet."""
        key = (kind, job_id)
        callbacks = self._listeners.get(key)
        if not callbacks:
            return
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            del self._listeners[key]

    def pending(self, kind: JobKind, job_id: str) -> int:
        return len(self._listeners.get((kind, job_id), ()))

    async def fire(self, kind: JobKind, job_id: str, job: Job) -> int:
        """
        Invoke and deregister every callback for the job.

        Returns:
            Number of callbacks invoked
        """
        callbacks = self._listeners.pop((kind, job_id), [])
        for callback in callbacks:
            try:
                result = callback(job)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("listener_failed", kind=kind.value, job_id=job_id)
        return len(callbacks)

    async def wait_for(self, kind: JobKind, job_id: str, timeout: float) -> Job | None:
        """
        Wait until the job is finished, up to `timeout` seconds.

        Returns:
            The finished job, or None on timeout
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _resolve(job: Job):
            if not future.done():
                future.set_result(job)

        self.on_complete(kind, job_id, _resolve)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            self.cancel(kind, job_id, _resolve)

"""
Staleness sweeper.

Fails jobs that have been waiting on the AI provider for longer than
JOB_TIMEOUT_SECONDS. The outbound request is not cancelled; a result that
arrives afterwards finds the job terminal and is discarded.
"""
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.base import utcnow
from app.models.job import FailureReason, JobKind
from app.routes.metrics import track_sweeper_timeout
from app.services.job_service import JobService
from app.services.periodic import PeriodicTask
from app.services.reconciler import CompletionReconciler


TIMEOUT_MESSAGE = "Timed out waiting for the AI provider"


class StalenessSweeper(PeriodicTask):
    name = "staleness_sweeper"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reconciler: CompletionReconciler,
        interval: float | None = None,
        timeout_seconds: int | None = None
    ):
        super().__init__(interval or settings.SWEEP_INTERVAL_SECONDS)
        self.session_factory = session_factory
        self.reconciler = reconciler
        self.timeout = timedelta(seconds=timeout_seconds or settings.JOB_TIMEOUT_SECONDS)

    async def run_once(self) -> int:
        """Fail every stale job once. Returns how many were timed out."""
        cutoff = utcnow() - self.timeout
        timed_out = 0

        for kind in JobKind:
            async with self.session_factory() as db:
                stale_ids = [job.id for job in await JobService(db, kind).list_stale(cutoff)]

            for job_id in stale_ids:
                failed = await self.reconciler.fail_job(kind, job_id, TIMEOUT_MESSAGE, FailureReason.TIMEOUT)
                if failed is None:
                    # Finished by a completion signal since the scan
                    continue
                timed_out += 1
                track_sweeper_timeout(kind.value)
                self.log.warning("job_timed_out", kind=kind.value, job_id=job_id)

        return timed_out

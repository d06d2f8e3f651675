"""
Job store for transformations and descriptions.

One JobService instance works on one job kind. Status changes made by the
reconciler, the sweeper and the submission flow all go through
`transition`, a conditional UPDATE guarded on the current status; whoever
loses the race gets None back and leaves the job alone.
"""
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import JobNotFound, InvalidTransition
from app.logging_config import get_logger
from app.models.job import (
    JOB_MODELS,
    ALLOWED_TRANSITIONS,
    IN_FLIGHT_STATUSES,
    Job,
    JobKind,
    JobStatus,
)
from app.routes.metrics import track_job_evicted


log = get_logger(component="job_store")


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class JobService:
    """Service for managing jobs of a single kind."""

    def __init__(self, db: AsyncSession, kind: JobKind, history_limit: int | None = None):
        self.db = db
        self.kind = kind
        self.model = JOB_MODELS[kind]
        self.history_limit = history_limit or settings.JOB_HISTORY_LIMIT

    async def create_job(self, user_id: str, project_id: str | None = None, **input_data: Any) -> Job:
        """
        Create a new job in PENDING status.

        Keeps at most `history_limit` jobs per user: the oldest are evicted
        first, whatever their status.

        Args:
            user_id: Owner of the job
            project_id: Optional project the job belongs to
            **input_data: Kind-specific input columns

        Returns:
            Newly created job
        """
        await self._evict_oldest(user_id)

        job = self.model(
            user_id=user_id,
            project_id=project_id,
            status=JobStatus.PENDING,
            **input_data
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        log.info("job_created", kind=self.kind.value, job_id=job.id, user_id=user_id, project_id=project_id)
        return job

    async def _evict_oldest(self, user_id: str):
        count_stmt = select(func.count()).select_from(self.model).where(self.model.user_id == user_id)
        count = (await self.db.execute(count_stmt)).scalar_one()
        overflow = count - self.history_limit + 1
        if overflow <= 0:
            return

        oldest_stmt = (
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.created_at.asc())
            .limit(overflow)
        )
        oldest = (await self.db.execute(oldest_stmt)).scalars().all()
        for job in oldest:
            in_flight = not job.is_terminal
            if in_flight:
                # A late completion signal for this id will be discarded
                log.warning(
                    "in_flight_job_evicted",
                    kind=self.kind.value,
                    job_id=job.id,
                    status=job.status.value
                )
            else:
                log.info("job_evicted", kind=self.kind.value, job_id=job.id)
            track_job_evicted(self.kind.value, in_flight)
            await self.db.delete(job)
        await self.db.flush()

    async def find_job(self, job_id: str) -> Job | None:
        """Get job by ID, or None."""
        return await self.db.get(self.model, job_id, populate_existing=True)

    async def get_job(self, job_id: str) -> Job:
        """Get job by ID; raises JobNotFound."""
        job = await self.find_job(job_id)
        if job is None:
            raise JobNotFound(self.kind.value, job_id)
        return job

    async def get_owned_job(self, job_id: str, user_id: str) -> Job:
        """Get a job only if it belongs to the user."""
        job = await self.find_job(job_id)
        if job is None or job.user_id != user_id:
            raise JobNotFound(self.kind.value, job_id)
        return job

    async def update_job(self, job_id: str, **fields: Any) -> Job:
        """
        Merge fields into a job.

        Only the kind's mutable columns are accepted, and a status change
        must be allowed by the state machine. Nothing else is derived: the
        caller sets result/error/completed_at together with the status.

        Raises:
            JobNotFound: unknown or evicted id
            InvalidTransition: the status change is not allowed
            ValueError: a field that is not mutable was given
        """
        unknown = set(fields) - self.model.MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update {self.kind.value} fields: {', '.join(sorted(unknown))}")

        job = await self.get_job(job_id)

        new_status = fields.get("status")
        if new_status is not None and new_status != job.status:
            new_status = JobStatus(new_status)
            if new_status not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidTransition(job_id, job.status.value, new_status.value)
            fields["status"] = new_status

        for key, value in fields.items():
            setattr(job, key, value)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def transition(
        self,
        job_id: str,
        to_status: JobStatus,
        from_statuses: Iterable[JobStatus] = IN_FLIGHT_STATUSES,
        **fields: Any
    ) -> Job | None:
        """
        Move a job to `to_status` only if it is currently in `from_statuses`.

        Returns:
            The updated job, or None when the job is missing or no longer
            in one of the expected statuses.
        """
        allowed_from = [s for s in from_statuses if to_status in ALLOWED_TRANSITIONS[s]]
        if not allowed_from:
            raise InvalidTransition(job_id, "/".join(s.value for s in from_statuses), to_status.value)

        stmt = (
            update(self.model)
            .where(self.model.id == job_id, self.model.status.in_(allowed_from))
            .values(status=to_status, **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            return None
        return await self.find_job(job_id)

    async def list_by_project(self, project_id: str) -> list[Job]:
        """Get all jobs of a project, newest first."""
        stmt = (
            select(self.model)
            .where(self.model.project_id == project_id)
            .order_by(self.model.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, user_id: str | None = None) -> list[Job]:
        """Get all jobs (optionally for one user), newest first."""
        stmt = select(self.model).order_by(self.model.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(self.model.user_id == user_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_stale(self, cutoff: datetime) -> list[Job]:
        """Get in-flight jobs created before the cutoff."""
        stmt = (
            select(self.model)
            .where(
                self.model.status.in_(IN_FLIGHT_STATUSES),
                self.model.created_at < cutoff
            )
            .order_by(self.model.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_job(self, job_id: str):
        """Delete a job permanently; raises JobNotFound."""
        job = await self.get_job(job_id)
        await self.db.delete(job)
        await self.db.commit()
        log.info("job_deleted", kind=self.kind.value, job_id=job_id)

    async def delete_by_project(self, project_id: str) -> int:
        """
        Delete every job of a project. Returns the number removed.

        Does not commit; the caller commits the whole cascade at once.
        """
        stmt = delete(self.model).where(self.model.project_id == project_id)
        result = await self.db.execute(stmt)
        return result.rowcount

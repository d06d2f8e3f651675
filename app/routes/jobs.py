"""
Job endpoints shared by transformations and descriptions.

Both kinds expose the same read/rename/delete/regenerate/wait surface;
only creation differs and lives in the kind's own route module.
"""
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.models.job import Job, JobKind
from app.models.user import User
from app.services.job_runtime import JobRuntime, get_runtime
from app.services.job_service import JobService, as_utc
from app.services.project_service import ProjectService
from app.services.submission_service import SubmissionService


MAX_WAIT_SECONDS = 60.0


class RenameJobRequest(BaseModel):
    """Request model for renaming a job."""
    name: str


def isoformat_utc(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def job_to_response(job: Job) -> dict[str, Any]:
    """Convert a job model to its API representation."""
    response = {
        "id": job.id,
        "kind": job.KIND.value,
        "user_id": job.user_id,
        "project_id": job.project_id,
        "name": job.name,
        "status": job.status.value,
        "error_message": job.error_message,
        "failure_reason": job.failure_reason.value if job.failure_reason else None,
        "processing_time_ms": job.processing_time_ms,
        "created_at": isoformat_utc(job.created_at),
        "dispatched_at": isoformat_utc(job.dispatched_at),
        "completed_at": isoformat_utc(job.completed_at),
    }
    for field in job.INPUT_FIELDS:
        response[field] = getattr(job, field)
    response[job.RESULT_FIELD] = job.result_payload
    return response


def register_job_routes(router: APIRouter, kind: JobKind):
    """Add the shared per-job endpoints for `kind` to `router`."""

    @router.get("", response_model=list[dict])
    async def list_jobs(
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db)
    ):
        """All of the user's jobs of this kind, newest first."""
        jobs = await JobService(db, kind).list_all(user_id=current_user.id)
        return [job_to_response(job) for job in jobs]

    @router.get("/{job_id}", response_model=dict)
    async def get_job(
        job_id: str,
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db)
    ):
        job = await JobService(db, kind).get_owned_job(job_id, current_user.id)
        return job_to_response(job)

    @router.put("/{job_id}", response_model=dict)
    async def rename_job(
        job_id: str,
        request: RenameJobRequest,
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db)
    ):
        """Rename a job. Input and lifecycle fields cannot be edited."""
        jobs = JobService(db, kind)
        await jobs.get_owned_job(job_id, current_user.id)
        job = await jobs.update_job(job_id, name=request.name)
        return job_to_response(job)

    @router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_job(
        job_id: str,
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db)
    ):
        jobs = JobService(db, kind)
        await jobs.get_owned_job(job_id, current_user.id)
        await jobs.delete_job(job_id)

    @router.post("/{job_id}/regenerate", response_model=dict, status_code=status.HTTP_201_CREATED)
    async def regenerate_job(
        job_id: str,
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db),
        runtime: JobRuntime = Depends(get_runtime)
    ):
        """
        Run the same request again as a new job.

        Costs one credit; the original job is kept as it is.
        """
        job = await SubmissionService(db, runtime).regenerate(kind, job_id, current_user.id)
        return job_to_response(job)

    @router.get("/{job_id}/wait", response_model=dict)
    async def wait_for_job(
        job_id: str,
        timeout: float = Query(30.0, gt=0, le=MAX_WAIT_SECONDS),
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db),
        runtime: JobRuntime = Depends(get_runtime)
    ):
        """
        Long-poll until the job is finished or `timeout` seconds pass.

        Returns the job in whatever state it is in at that point.
        """
        jobs = JobService(db, kind)
        job = await jobs.get_owned_job(job_id, current_user.id)
        if not job.is_terminal:
            await runtime.listeners.wait_for(kind, job_id, timeout)
            job = await jobs.get_job(job_id)
        return job_to_response(job)


def register_project_listing(router: APIRouter, kind: JobKind):
    """Add GET /api/projects/{project_id}/<kind>s to `router`."""

    @router.get(f"/{{project_id}}/{kind.value}s", response_model=list[dict])
    async def list_project_jobs(
        project_id: str,
        current_user: User = Depends(get_user_from_token),
        db: AsyncSession = Depends(get_db)
    ):
        await ProjectService(db).get_owned(project_id, current_user.id)
        jobs = await JobService(db, kind).list_by_project(project_id)
        return [job_to_response(job) for job in jobs]

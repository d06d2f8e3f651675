"""
Transformation API routes.

Virtual staging of room photos: the photo is staged locally, a credit is
taken and the job is handed to the n8n transformation workflow.
"""
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.models.job import JobKind
from app.models.user import User
from app.routes.jobs import job_to_response, register_job_routes
from app.services.job_runtime import JobRuntime, get_runtime
from app.services.project_service import ProjectService
from app.services.submission_service import SubmissionService


router = APIRouter(prefix="/api/transformations", tags=["transformations"])


class CreateTransformationRequest(BaseModel):
    """Request model for creating a transformation."""
    image: str = Field(..., description="Photo as a data URL or bare base64")
    style: str
    custom_prompt: str | None = None
    annotations: Any = None
    project_id: str | None = None
    name: str | None = None


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_transformation(
    request: CreateTransformationRequest,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db),
    runtime: JobRuntime = Depends(get_runtime)
):
    """
    Create a transformation and dispatch it.

    Returns as soon as the provider has accepted (or rejected) the work.
    The result arrives later; poll the job or use /{id}/wait.
    """
    if request.project_id:
        await ProjectService(db).get_owned(request.project_id, current_user.id)

    job = await SubmissionService(db, runtime).submit_transformation(
        current_user.id,
        image=request.image,
        style=request.style,
        custom_prompt=request.custom_prompt,
        annotations=request.annotations,
        project_id=request.project_id,
        name=request.name
    )
    return job_to_response(job)


register_job_routes(router, JobKind.TRANSFORMATION)

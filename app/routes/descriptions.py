"""
Description API routes.

Listing text generated by the n8n description workflow from the
property's details.
"""
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.models.job import JobKind
from app.models.user import User
from app.routes.jobs import job_to_response, register_job_routes
from app.services.job_runtime import JobRuntime, get_runtime
from app.services.project_service import ProjectService
from app.services.submission_service import SubmissionService


router = APIRouter(prefix="/api/descriptions", tags=["descriptions"])


class CreateDescriptionRequest(BaseModel):
    """Request model for creating a description."""
    property_data: dict[str, Any]
    tone: str = "professional"
    length_option: str = "medium"
    language: str = "es"
    source_image_urls: list[str] = []
    project_id: str | None = None
    name: str | None = None


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_description(
    request: CreateDescriptionRequest,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db),
    runtime: JobRuntime = Depends(get_runtime)
):
    """Create a description and dispatch it."""
    if request.project_id:
        await ProjectService(db).get_owned(request.project_id, current_user.id)

    job = await SubmissionService(db, runtime).submit_description(
        current_user.id,
        property_data=request.property_data,
        tone=request.tone,
        length_option=request.length_option,
        language=request.language,
        source_image_urls=request.source_image_urls,
        project_id=request.project_id,
        name=request.name
    )
    return job_to_response(job)


register_job_routes(router, JobKind.DESCRIPTION)

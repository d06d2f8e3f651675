"""
Project API routes.
"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_user_from_token
from app.models.job import JobKind
from app.models.project import Project
from app.models.user import User
from app.routes.jobs import isoformat_utc, register_project_listing
from app.services.project_service import ProjectService


router = APIRouter(prefix="/api/projects", tags=["projects"])


class CreateProjectRequest(BaseModel):
    """Request model for creating a project."""
    name: str
    description: str | None = None


class UpdateProjectRequest(BaseModel):
    """Request model for updating a project."""
    name: str | None = Field(None, min_length=1)
    description: str | None = None


def project_to_response(project: Project) -> dict:
    return {
        "id": project.id,
        "user_id": project.user_id,
        "name": project.name,
        "description": project.description,
        "created_at": isoformat_utc(project.created_at),
        "updated_at": isoformat_utc(project.updated_at),
    }


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    project = await ProjectService(db).create(current_user.id, request.name, request.description)
    return project_to_response(project)


@router.get("", response_model=list[dict])
async def list_projects(
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    projects = await ProjectService(db).list_for_user(current_user.id)
    return [project_to_response(project) for project in projects]


@router.get("/{project_id}", response_model=dict)
async def get_project(
    project_id: str,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    project = await ProjectService(db).get_owned(project_id, current_user.id)
    return project_to_response(project)


@router.put("/{project_id}", response_model=dict)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    project = await ProjectService(db).update(
        project_id,
        current_user.id,
        name=request.name,
        description=request.description
    )
    return project_to_response(project)


@router.delete("/{project_id}", response_model=dict)
async def delete_project(
    project_id: str,
    current_user: User = Depends(get_user_from_token),
    db: AsyncSession = Depends(get_db)
):
    """Delete a project together with all of its jobs."""
    removed = await ProjectService(db).delete(project_id, current_user.id)
    return {"status": "deleted", "project_id": project_id, "jobs_removed": removed}


for kind in JobKind:
    register_project_listing(router, kind)

"""
Project service.

Projects are always looked up together with their owner: a project that
belongs to someone else is reported as not found.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import NotFound
from app.logging_config import get_logger
from app.models.job import JobKind
from app.models.project import Project
from app.services.job_service import JobService


log = get_logger(component="projects")


class ProjectService:
    """Service for managing a user's projects."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_owned(self, project_id: str, user_id: str) -> Project:
        """
        Get a project owned by the user.

        Raises:
            NotFound: unknown id, or owned by another user
        """
        stmt = select(Project).where(
            Project.id == project_id,
            Project.user_id == user_id
        )
        result = await self.db.execute(stmt)
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFound("project", project_id)
        return project

    async def list_for_user(self, user_id: str) -> list[Project]:
        """Get the user's projects, newest first."""
        stmt = (
            select(Project)
            .where(Project.user_id == user_id)
            .order_by(Project.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(self, user_id: str, name: str, description: str | None = None) -> Project:
        project = Project(user_id=user_id, name=name, description=description)
        self.db.add(project)
        await self.db.commit()
        await self.db.refresh(project)

        log.info("project_created", project_id=project.id, user_id=user_id)
        return project

    async def update(
        self,
        project_id: str,
        user_id: str,
        name: str | None = None,
        description: str | None = None
    ) -> Project:
        """Rename a project or change its description; None leaves a field as it is."""
        project = await self.get_owned(project_id, user_id)
        if name is not None:
            project.name = name
        if description is not None:
            project.description = description
        await self.db.commit()
        await self.db.refresh(project)

        log.info("project_updated", project_id=project_id, user_id=user_id)
        return project

    async def delete(self, project_id: str, user_id: str) -> dict[str, int]:
        """
        Delete a project and every job that points at it.

        Returns:
            Number of jobs removed per kind
        """
        project = await self.get_owned(project_id, user_id)

        removed = {}
        for kind in JobKind:
            removed[kind.value] = await JobService(self.db, kind).delete_by_project(project_id)

        await self.db.delete(project)
        await self.db.commit()

        log.info("project_deleted", project_id=project_id, user_id=user_id, jobs_removed=removed)
        return removed

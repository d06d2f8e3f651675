"""
Submission flow for AI jobs.

debit -> create (pending) -> dispatch -> processing

The credit is taken before anything is created. If the job cannot be
created the credit goes back; if the provider rejects the dispatch the job
fails through the reconciler, which refunds it.
"""
import uuid
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import DispatchRejected, InvalidImage
from app.logging_config import get_logger
from app.models.base import utcnow
from app.models.job import Description, FailureReason, Job, JobKind, JobStatus, Transformation
from app.routes.metrics import track_job_dispatched, track_job_submitted
from app.services.credit_service import CreditService
from app.services.job_runtime import JobRuntime
from app.services.job_service import JobService


log = get_logger(component="submission")


class SubmissionService:
    """Creates jobs and hands them to the AI provider."""

    def __init__(self, db: AsyncSession, runtime: JobRuntime):
        self.db = db
        self.runtime = runtime
        self.cost = settings.CREDITS_PER_JOB

    async def submit_transformation(
        self,
        user_id: str,
        image: str,
        style: str,
        custom_prompt: str | None = None,
        annotations: Any = None,
        project_id: str | None = None,
        name: str | None = None
    ) -> Job:
        """
        Submit a virtual staging request.

        Args:
            image: Photo as a data URL or bare base64

        Raises:
            InsufficientCredits: nothing was created
            InvalidImage: the photo could not be decoded (credit refunded)
        """
        async def prepare() -> dict[str, Any]:
            image_ref, mime_type = await self.runtime.stager.stage(image)
            return {
                "original_image_ref": image_ref,
                "original_image_mime": mime_type,
                "style": style,
                "custom_prompt": custom_prompt,
                "annotations": annotations,
            }

        return await self._submit(JobKind.TRANSFORMATION, user_id, project_id, name, prepare)

    async def submit_description(
        self,
        user_id: str,
        property_data: dict[str, Any],
        tone: str,
        length_option: str = "medium",
        language: str = "es",
        source_image_urls: list[str] | None = None,
        project_id: str | None = None,
        name: str | None = None
    ) -> Job:
        """Submit a listing text request."""
        async def prepare() -> dict[str, Any]:
            return {
                "property_data": property_data,
                "tone": tone,
                "length_option": length_option,
                "language": language,
                "source_image_urls": source_image_urls or [],
            }

        return await self._submit(JobKind.DESCRIPTION, user_id, project_id, name, prepare)

    async def regenerate(self, kind: JobKind, job_id: str, user_id: str) -> Job:
        """
        Submit a new job with the same input as an existing one.

        The original job is left untouched; the new job costs a credit
        like any other submission.
        """
        original = await JobService(self.db, kind).get_owned_job(job_id, user_id)
        input_data = {field: getattr(original, field) for field in original.INPUT_FIELDS}
        project_id, name = original.project_id, original.name

        async def prepare() -> dict[str, Any]:
            return input_data

        log.info("job_regenerated", kind=kind.value, job_id=job_id)
        return await self._submit(kind, user_id, project_id, name, prepare)

    async def _submit(
        self,
        kind: JobKind,
        user_id: str,
        project_id: str | None,
        name: str | None,
        prepare: Callable[[], Awaitable[dict[str, Any]]]
    ) -> Job:
        credits = CreditService(self.db)
        job_id = str(uuid.uuid4())

        await credits.use_credits(
            user_id,
            self.cost,
            job_id=job_id,
            description=f"{kind.value.capitalize()} submission"
        )

        try:
            input_data = await prepare()
            job = await JobService(self.db, kind).create_job(
                user_id,
                project_id,
                id=job_id,
                name=name,
                **input_data
            )
        except Exception:
            log.warning("job_creation_failed", kind=kind.value, job_id=job_id, user_id=user_id)
            await self.db.rollback()
            await credits.add_credits(
                user_id,
                self.cost,
                job_id=job_id,
                description=f"Refund: {kind.value} could not be created"
            )
            raise

        track_job_submitted(kind.value)
        return await self._dispatch(job)

    async def _dispatch(self, job: Job) -> Job:
        jobs = JobService(self.db, job.KIND)
        client = self.runtime.dispatch_client

        try:
            if isinstance(job, Transformation):
                image = await self.runtime.stager.load(job.original_image_ref)
                await client.dispatch_transformation(job, image)
            elif isinstance(job, Description):
                await client.dispatch_description(job)
        except (DispatchRejected, InvalidImage) as e:
            await self.runtime.reconciler.fail_job(
                job.KIND,
                job.id,
                str(e),
                FailureReason.DISPATCH_REJECTED,
                from_statuses=(JobStatus.PENDING,)
            )
            return await jobs.get_job(job.id)

        track_job_dispatched(job.KIND.value)
        processing = await jobs.transition(
            job.id,
            JobStatus.PROCESSING,
            (JobStatus.PENDING,),
            dispatched_at=utcnow()
        )
        if processing is None:
            # A completion signal beat the dispatch response
            log.info("dispatch_ack_after_completion", kind=job.KIND.value, job_id=job.id)
            return await jobs.get_job(job.id)
        return processing

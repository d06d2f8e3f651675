"""
Completion reconciler.

Every way a result can come back from the AI provider (the redirect
callback, a cross-window message, the polled mailbox, a server-to-server
POST) is parsed by a small adapter into a CompletionSignal and applied by
`CompletionReconciler.apply_completion`. Duplicates and late arrivals are
absorbed there: a job that is already terminal is never touched again.

Failures from other sources (dispatch rejected, sweeper timeout) go through
`fail_job`, so every failed job is refunded and announced the same way.
"""
import enum
import json
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.logging_config import get_logger
from app.models.base import utcnow
from app.models.job import FailureReason, IN_FLIGHT_STATUSES, Job, JobKind, JobStatus
from app.routes.metrics import track_completion_signal, track_job_completed, track_job_failed
from app.services.credit_service import CreditService
from app.services.job_service import JobService, as_utc
from app.services.listener_registry import ListenerRegistry


log = get_logger(component="reconciler")

NO_RESULT_MESSAGE = "No result received from the AI provider"

# Wire names used by the provider and the browser callback page
ID_FIELDS = {
    JobKind.TRANSFORMATION: "transformationId",
    JobKind.DESCRIPTION: "descriptionId",
}
RESULT_FIELDS = {
    JobKind.TRANSFORMATION: "imageUrl",
    JobKind.DESCRIPTION: "text",
}
MESSAGE_TYPES = {
    "n8n-transformation-complete": JobKind.TRANSFORMATION,
    "n8n-description-complete": JobKind.DESCRIPTION,
}


class SignalChannel(str, enum.Enum):
    """Delivery path a completion signal arrived on."""
    REDIRECT = "redirect"
    MESSAGE = "message"
    MAILBOX = "mailbox"
    CALLBACK = "callback"
    SIMULATION = "simulation"


class CompletionOutcome(str, enum.Enum):
    """What apply_completion did with a signal."""
    COMPLETED = "completed"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    UNKNOWN_JOB = "unknown_job"


class CompletionSignal(BaseModel):
    """Out-of-band report of a job's result or error."""
    kind: JobKind
    job_id: str
    result: str | None = None
    error: str | None = None

    @field_validator("result", "error", mode="before")
    @classmethod
    def _blank_is_absent(cls, value: Any):
        if isinstance(value, str) and not value.strip():
            return None
        return value


# ============================================
# Channel adapters
# ============================================

def _result_value(value: Any) -> str | None:
    # Anything but a string is not a usable result
    return value if isinstance(value, str) else None


def _error_value(value: Any) -> str | None:
    """Flatten a provider error (string, {"message": ...} object, anything else) to text."""
    if value is None or value is False:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping) and isinstance(value.get("message"), str):
        return value["message"]
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _signal_for_kind(kind: JobKind, data: Mapping[str, Any]) -> CompletionSignal | None:
    job_id = data.get(ID_FIELDS[kind])
    if not job_id:
        return None
    return CompletionSignal(
        kind=kind,
        job_id=str(job_id),
        result=_result_value(data.get(RESULT_FIELDS[kind])),
        error=_error_value(data.get("error")),
    )


def _infer_kind(data: Mapping[str, Any]) -> JobKind | None:
    for kind, field in ID_FIELDS.items():
        if data.get(field):
            return kind
    return None


def signal_from_query_params(params: Mapping[str, Any]) -> CompletionSignal | None:
    """Redirect callback: ?type=transformation&transformationId=..&imageUrl=..&error=.."""
    try:
        kind = JobKind(params.get("type"))
    except ValueError:
        return None
    return _signal_for_kind(kind, params)


def signal_from_message(data: Mapping[str, Any]) -> CompletionSignal | None:
    """
    Cross-context message.

    Accepts the posted envelope {"type": "n8n-...-complete", "payload": {...}}
    as well as a bare event detail carrying transformationId/descriptionId.
    """
    if "type" in data:
        message_type = data.get("type")
        kind = MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
        payload = data.get("payload")
        if kind is None or not isinstance(payload, Mapping):
            return None
        return _signal_for_kind(kind, payload)

    kind = _infer_kind(data)
    return _signal_for_kind(kind, data) if kind else None


def signal_from_mailbox_entry(entry: Mapping[str, Any]) -> CompletionSignal | None:
    """Mailbox entry: {transformationId|descriptionId, imageUrl|text|error, timestamp}."""
    kind = _infer_kind(entry)
    return _signal_for_kind(kind, entry) if kind else None


def signal_from_callback_body(body: Mapping[str, Any]) -> CompletionSignal | None:
    """
    Server-to-server transformation callback.

    The workflow has been seen to post any of:
    {transformationId, transformedImageUrl}, {id, url}, and either one
    wrapped in {"data": ...}. An `error` field reports a failure.
    """
    candidates = [body]
    if isinstance(body.get("data"), Mapping):
        candidates.append(body["data"])

    for data in candidates:
        job_id = data.get("transformationId") or data.get("id")
        result = data.get("transformedImageUrl") or data.get("url")
        error = data.get("error")
        if job_id and (result or error):
            return CompletionSignal(
                kind=JobKind.TRANSFORMATION,
                job_id=str(job_id),
                result=_result_value(result),
                error=_error_value(error),
            )
    return None


# ============================================
# Reconciler
# ============================================

class CompletionReconciler:
    """Applies completion signals and failures to the job store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        listeners: ListenerRegistry,
        refund_amount: int | None = None
    ):
        self.session_factory = session_factory
        self.listeners = listeners
        self.refund_amount = refund_amount or settings.CREDITS_PER_JOB

    async def apply_completion(
        self,
        signal: CompletionSignal,
        channel: SignalChannel = SignalChannel.CALLBACK
    ) -> CompletionOutcome:
        """
        Apply one completion signal. Safe to call any number of times for
        the same job: only the first signal to find it in flight counts.
        """
        bound = log.bind(kind=signal.kind.value, job_id=signal.job_id, channel=channel.value)

        async with self.session_factory() as db:
            jobs = JobService(db, signal.kind)
            job = await jobs.find_job(signal.job_id)

            if job is None:
                bound.warning("signal_for_unknown_job")
                return self._track(channel, CompletionOutcome.UNKNOWN_JOB)

            if job.is_terminal:
                bound.info("duplicate_signal_ignored", status=job.status.value)
                return self._track(channel, CompletionOutcome.DUPLICATE)

            if signal.error is not None:
                finished = await self._fail(db, job, signal.error, FailureReason.PROVIDER_ERROR)
            elif signal.result is not None:
                finished = await self._complete(db, job, signal.result)
            else:
                bound.warning("signal_without_result")
                finished = await self._fail(db, job, NO_RESULT_MESSAGE, FailureReason.PROTOCOL_VIOLATION)

        if finished is None:
            # Another path finished the job between our read and our write
            bound.info("signal_lost_race")
            return self._track(channel, CompletionOutcome.DUPLICATE)

        await self.listeners.fire(signal.kind, signal.job_id, finished)
        outcome = CompletionOutcome.COMPLETED if finished.status == JobStatus.COMPLETED else CompletionOutcome.FAILED
        bound.info("signal_applied", outcome=outcome.value)
        return self._track(channel, outcome)

    async def fail_job(
        self,
        kind: JobKind,
        job_id: str,
        message: str,
        reason: FailureReason,
        from_statuses: Iterable[JobStatus] = IN_FLIGHT_STATUSES
    ) -> Job | None:
        """
        Fail an in-flight job, refund its credit and notify listeners.

        Returns:
            The failed job, or None if it was missing or already terminal
        """
        async with self.session_factory() as db:
            job = await JobService(db, kind).find_job(job_id)
            if job is None:
                return None
            finished = await self._fail(db, job, message, reason, from_statuses)

        if finished is not None:
            await self.listeners.fire(kind, job_id, finished)
        return finished

    async def _complete(self, db: AsyncSession, job: Job, result: str) -> Job | None:
        now = utcnow()
        finished = await JobService(db, job.KIND).transition(
            job.id,
            JobStatus.COMPLETED,
            **{job.RESULT_FIELD: result},
            completed_at=now,
            processing_time_ms=self._elapsed_ms(job, now),
        )
        if finished is not None:
            track_job_completed(job.KIND.value)
        return finished

    async def _fail(
        self,
        db: AsyncSession,
        job: Job,
        message: str,
        reason: FailureReason,
        from_statuses: Iterable[JobStatus] = IN_FLIGHT_STATUSES
    ) -> Job | None:
        now = utcnow()
        finished = await JobService(db, job.KIND).transition(
            job.id,
            JobStatus.FAILED,
            from_statuses,
            error_message=message,
            failure_reason=reason,
            completed_at=now,
            processing_time_ms=self._elapsed_ms(job, now),
        )
        if finished is None:
            return None

        track_job_failed(job.KIND.value, reason.value)
        log.info(
            "job_failed",
            kind=job.KIND.value,
            job_id=job.id,
            reason=reason.value,
            error=message
        )
        await CreditService(db).add_credits(
            job.user_id,
            self.refund_amount,
            job_id=job.id,
            description=f"Refund for failed {job.KIND.value}: {job.id}"
        )
        return finished

    @staticmethod
    def _elapsed_ms(job: Job, now) -> int:
        started = as_utc(job.dispatched_at) or as_utc(job.created_at)
        return max(int((now - started).total_seconds() * 1000), 0)

    @staticmethod
    def _track(channel: SignalChannel, outcome: CompletionOutcome) -> CompletionOutcome:
        track_completion_signal(channel.value, outcome.value)
        return outcome

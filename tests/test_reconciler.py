import pytest

from app.models.job import FailureReason, JobKind, JobStatus
from app.services.credit_service import CreditService
from app.services.job_service import JobService
from app.services.reconciler import (
    NO_RESULT_MESSAGE,
    CompletionOutcome,
    CompletionSignal,
    SignalChannel,
    signal_from_callback_body,
    signal_from_mailbox_entry,
    signal_from_message,
    signal_from_query_params,
)

from tests.test_jobs import description_input, transformation_input


RESULT_URL = "https://cdn.test/staged.jpg"


@pytest.fixture
def submit(db, user):
    """Debit a credit and create an in-flight job, as a submission would."""
    async def _submit(kind=JobKind.TRANSFORMATION, status=JobStatus.PROCESSING):
        inputs = transformation_input() if kind == JobKind.TRANSFORMATION else description_input()
        await CreditService(db).use_credits(user.id, 1)
        jobs = JobService(db, kind)
        job = await jobs.create_job(user.id, **inputs)
        if status == JobStatus.PROCESSING:
            job = await jobs.transition(job.id, JobStatus.PROCESSING)
        return job
    return _submit


async def balance(db, user) -> int:
    return await CreditService(db).get_balance(user.id)


# ============================================
# apply_completion
# ============================================

async def test_result_completes_job_without_refund(db, user, reconciler, submit):
    job = await submit()

    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL)
    )

    assert outcome == CompletionOutcome.COMPLETED
    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.transformed_image_url == RESULT_URL
    assert job.error_message is None
    assert job.completed_at is not None
    assert job.processing_time_ms >= 0
    assert await balance(db, user) == 4


async def test_description_result_is_stored_as_text(db, reconciler, submit):
    job = await submit(JobKind.DESCRIPTION)

    await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.DESCRIPTION, job_id=job.id, result="Charming two-bedroom flat.")
    )

    job = await JobService(db, JobKind.DESCRIPTION).get_job(job.id)
    assert job.generated_text == "Charming two-bedroom flat."


async def test_error_fails_job_and_refunds(db, user, reconciler, submit):
    job = await submit()

    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, error="Model overloaded")
    )

    assert outcome == CompletionOutcome.FAILED
    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Model overloaded"
    assert job.failure_reason == FailureReason.PROVIDER_ERROR
    assert job.transformed_image_url is None
    assert await balance(db, user) == 5


async def test_error_wins_over_result(db, reconciler, submit):
    job = await submit()

    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL, error="partial")
    )

    assert outcome == CompletionOutcome.FAILED


async def test_signal_without_result_is_a_protocol_violation(db, user, reconciler, submit):
    job = await submit()

    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result="", error="")
    )

    assert outcome == CompletionOutcome.FAILED
    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.error_message == NO_RESULT_MESSAGE
    assert job.failure_reason == FailureReason.PROTOCOL_VIOLATION
    assert await balance(db, user) == 5


async def test_duplicate_signals_are_discarded(db, user, reconciler, submit):
    job = await submit()
    failure = CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, error="boom")

    assert await reconciler.apply_completion(failure) == CompletionOutcome.FAILED
    assert await reconciler.apply_completion(failure) == CompletionOutcome.DUPLICATE
    late_success = CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL)
    assert await reconciler.apply_completion(late_success) == CompletionOutcome.DUPLICATE

    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.status == JobStatus.FAILED
    assert job.transformed_image_url is None
    # Refunded exactly once
    assert await balance(db, user) == 5


async def test_unknown_job_is_discarded(reconciler):
    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.DESCRIPTION, job_id="evicted", result="text")
    )

    assert outcome == CompletionOutcome.UNKNOWN_JOB


async def test_signal_may_finish_a_pending_job(db, reconciler, submit):
    job = await submit(status=JobStatus.PENDING)

    outcome = await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL),
        SignalChannel.REDIRECT
    )

    assert outcome == CompletionOutcome.COMPLETED
    # The late dispatch acknowledgement must not reopen it
    jobs = JobService(db, JobKind.TRANSFORMATION)
    assert await jobs.transition(job.id, JobStatus.PROCESSING, (JobStatus.PENDING,)) is None
    assert (await jobs.get_job(job.id)).status == JobStatus.COMPLETED


async def test_listeners_fire_once_after_completion(reconciler, listeners, submit):
    job = await submit()
    seen = []
    listeners.on_complete(JobKind.TRANSFORMATION, job.id, lambda finished: seen.append(finished.status))

    signal = CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL)
    await reconciler.apply_completion(signal)
    await reconciler.apply_completion(signal)

    assert seen == [JobStatus.COMPLETED]
    assert listeners.pending(JobKind.TRANSFORMATION, job.id) == 0


# ============================================
# fail_job
# ============================================

async def test_fail_job_refunds_and_notifies(db, user, reconciler, listeners, submit):
    job = await submit()
    seen = []

    async def on_done(finished):
        seen.append(finished.failure_reason)

    listeners.on_complete(JobKind.TRANSFORMATION, job.id, on_done)

    failed = await reconciler.fail_job(JobKind.TRANSFORMATION, job.id, "rejected", FailureReason.DISPATCH_REJECTED)

    assert failed.status == JobStatus.FAILED
    assert seen == [FailureReason.DISPATCH_REJECTED]
    assert await balance(db, user) == 5


async def test_fail_job_leaves_terminal_jobs_alone(db, user, reconciler, submit):
    job = await submit()
    await reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL)
    )

    assert await reconciler.fail_job(JobKind.TRANSFORMATION, job.id, "late", FailureReason.TIMEOUT) is None
    assert await reconciler.fail_job(JobKind.TRANSFORMATION, "missing", "late", FailureReason.TIMEOUT) is None
    assert await balance(db, user) == 4


# ============================================
# Channel adapters
# ============================================

def test_query_params_transformation():
    signal = signal_from_query_params({
        "type": "transformation",
        "transformationId": "t-1",
        "imageUrl": RESULT_URL,
        "error": "",
    })

    assert signal == CompletionSignal(kind=JobKind.TRANSFORMATION, job_id="t-1", result=RESULT_URL)


def test_query_params_description_error():
    signal = signal_from_query_params({"type": "description", "descriptionId": "d-1", "text": "", "error": "bad"})

    assert signal.kind == JobKind.DESCRIPTION
    assert signal.result is None
    assert signal.error == "bad"


@pytest.mark.parametrize("params", [
    {},
    {"type": "video", "transformationId": "t-1"},
    {"type": "transformation", "descriptionId": "d-1"},
    {"type": "description", "descriptionId": ""},
])
def test_query_params_without_id(params):
    assert signal_from_query_params(params) is None


def test_message_envelope():
    signal = signal_from_message({
        "type": "n8n-description-complete",
        "payload": {"descriptionId": "d-1", "text": "Lovely home", "error": None},
    })

    assert signal == CompletionSignal(kind=JobKind.DESCRIPTION, job_id="d-1", result="Lovely home")


def test_message_bare_detail():
    signal = signal_from_message({"transformationId": "t-1", "imageUrl": RESULT_URL})

    assert signal.kind == JobKind.TRANSFORMATION
    assert signal.result == RESULT_URL


@pytest.mark.parametrize("data", [
    {"type": "something-else", "payload": {"transformationId": "t-1"}},
    {"type": "n8n-transformation-complete", "payload": "t-1"},
    {"hello": "world"},
])
def test_message_unrecognised(data):
    assert signal_from_message(data) is None


def test_mailbox_entry():
    signal = signal_from_mailbox_entry({"descriptionId": "d-1", "error": "quota", "timestamp": 1700000000000})

    assert signal == CompletionSignal(kind=JobKind.DESCRIPTION, job_id="d-1", error="quota")


@pytest.mark.parametrize("body", [
    {"transformationId": "t-1", "transformedImageUrl": RESULT_URL},
    {"id": "t-1", "url": RESULT_URL},
    {"data": {"transformationId": "t-1", "transformedImageUrl": RESULT_URL}},
    {"data": {"id": "t-1", "url": RESULT_URL}},
])
def test_callback_body_shapes(body):
    signal = signal_from_callback_body(body)

    assert signal == CompletionSignal(kind=JobKind.TRANSFORMATION, job_id="t-1", result=RESULT_URL)


def test_callback_body_error():
    signal = signal_from_callback_body({"transformationId": "t-1", "error": "nsfw"})

    assert signal.error == "nsfw"


@pytest.mark.parametrize("body", [
    {"transformationId": "t-1"},
    {"url": RESULT_URL},
    {"data": "t-1"},
])
def test_callback_body_missing_fields(body):
    assert signal_from_callback_body(body) is None


def test_error_object_is_flattened_to_its_message():
    signal = signal_from_mailbox_entry({"transformationId": "t-1", "error": {"code": 429, "message": "quota exceeded"}})

    assert signal.error == "quota exceeded"


def test_error_object_without_message_is_kept_as_json():
    signal = signal_from_callback_body({"transformationId": "t-1", "error": {"code": 500}})

    assert signal.error == '{"code": 500}'


def test_non_string_result_counts_as_missing():
    signal = signal_from_message({
        "type": "n8n-transformation-complete",
        "payload": {"transformationId": "t-1", "imageUrl": {"href": RESULT_URL}},
    })

    assert signal.result is None
    assert signal.error is None


def test_unhashable_message_type_is_unrecognised():
    assert signal_from_message({"type": ["n8n-transformation-complete"], "payload": {}}) is None


async def test_non_string_result_is_a_protocol_violation(db, reconciler, submit):
    job = await submit()

    outcome = await reconciler.apply_completion(
        signal_from_callback_body({"transformationId": job.id, "transformedImageUrl": 42})
    )

    assert outcome == CompletionOutcome.FAILED
    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.failure_reason == FailureReason.PROTOCOL_VIOLATION

import pytest

from app.exceptions import InsufficientCredits, InvalidImage, JobNotFound
from app.models.job import FailureReason, JobKind, JobStatus
from app.models.user import PlanTier, UNLIMITED_CREDITS
from app.services.credit_service import CreditService
from app.services.job_service import JobService
from app.services.reconciler import CompletionOutcome, CompletionSignal, SignalChannel
from app.services.submission_service import SubmissionService

from tests.conftest import IMAGE_DATA_URL, PNG_BYTES


RESULT_URL = "https://cdn.test/staged.jpg"


async def balance(db, user_id) -> int:
    return await CreditService(db).get_balance(user_id)


async def test_transformation_is_debited_and_dispatched(db, user, runtime, provider):
    job = await SubmissionService(db, runtime).submit_transformation(
        user.id,
        image=IMAGE_DATA_URL,
        style="modern",
        custom_prompt="warm light",
        name="Kitchen"
    )

    assert job.status == JobStatus.PROCESSING
    assert job.dispatched_at is not None
    assert job.name == "Kitchen"
    assert job.original_image_ref.startswith("sha256:")
    assert await balance(db, user.id) == 4
    assert len(provider.requests) == 1
    assert job.id.encode() in provider.requests[0].content
    assert PNG_BYTES in provider.requests[0].content


async def test_description_is_dispatched_as_json(db, user, runtime, provider):
    job = await SubmissionService(db, runtime).submit_description(
        user.id,
        property_data={"propertyType": "villa", "bedrooms": 4},
        tone="luxury",
        language="en"
    )

    assert job.status == JobStatus.PROCESSING
    payload = provider.last_json()
    assert payload["descriptionId"] == job.id
    assert payload["lengthOption"] == "medium"
    assert payload["sourceImageUrls"] == []


async def test_insufficient_credits_creates_nothing(db, make_user, runtime, provider):
    broke = await make_user("broke", credits=0)

    with pytest.raises(InsufficientCredits):
        await SubmissionService(db, runtime).submit_transformation(broke.id, image=IMAGE_DATA_URL, style="modern")

    assert await JobService(db, JobKind.TRANSFORMATION).list_all(user_id=broke.id) == []
    assert provider.requests == []
    assert await balance(db, broke.id) == 0


async def test_invalid_image_refunds_the_credit(db, user, runtime, provider):
    with pytest.raises(InvalidImage):
        await SubmissionService(db, runtime).submit_transformation(user.id, image="data:image/png;base64,xx", style="modern")

    assert await JobService(db, JobKind.TRANSFORMATION).list_all(user_id=user.id) == []
    assert provider.requests == []
    assert await balance(db, user.id) == 5


async def test_rejected_dispatch_fails_and_refunds(db, user, runtime, provider):
    provider.status_code = 503

    job = await SubmissionService(db, runtime).submit_transformation(user.id, image=IMAGE_DATA_URL, style="modern")

    assert job.status == JobStatus.FAILED
    assert job.failure_reason == FailureReason.DISPATCH_REJECTED
    assert job.dispatched_at is None
    assert "503" in job.error_message
    assert await balance(db, user.id) == 5


async def test_submit_then_complete(db, user, runtime):
    job = await SubmissionService(db, runtime).submit_transformation(user.id, image=IMAGE_DATA_URL, style="modern")

    outcome = await runtime.reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=job.id, result=RESULT_URL),
        SignalChannel.REDIRECT
    )

    assert outcome == CompletionOutcome.COMPLETED
    job = await JobService(db, JobKind.TRANSFORMATION).get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.transformed_image_url == RESULT_URL
    assert await balance(db, user.id) == 4


async def test_regenerate_creates_a_new_job(db, user, runtime, provider):
    service = SubmissionService(db, runtime)
    original = await service.submit_transformation(user.id, image=IMAGE_DATA_URL, style="rustic", name="Bedroom")
    await runtime.reconciler.apply_completion(
        CompletionSignal(kind=JobKind.TRANSFORMATION, job_id=original.id, error="bad output")
    )

    retry = await service.regenerate(JobKind.TRANSFORMATION, original.id, user.id)

    assert retry.id != original.id
    assert retry.status == JobStatus.PROCESSING
    assert retry.style == "rustic"
    assert retry.name == "Bedroom"
    assert retry.original_image_ref == original.original_image_ref
    assert (await JobService(db, JobKind.TRANSFORMATION).get_job(original.id)).status == JobStatus.FAILED
    assert len(provider.requests) == 2
    # One refunded failure, one live retry
    assert await balance(db, user.id) == 4


async def test_regenerate_someone_elses_job(db, user, make_user, runtime):
    job = await SubmissionService(db, runtime).submit_description(user.id, property_data={}, tone="friendly")
    other = await make_user("other")

    with pytest.raises(JobNotFound):
        await SubmissionService(db, runtime).regenerate(JobKind.DESCRIPTION, job.id, other.id)


async def test_unlimited_plan_is_not_debited(db, user, runtime):
    await CreditService(db).upgrade_plan(user.id, PlanTier.ENTERPRISE)

    for _ in range(3):
        await SubmissionService(db, runtime).submit_description(user.id, property_data={}, tone="friendly")

    assert await balance(db, user.id) == UNLIMITED_CREDITS


async def test_description_end_to_end_with_late_mailbox_copy(db, user, runtime):
    job = await SubmissionService(db, runtime).submit_description(
        user.id,
        property_data={"propertyType": "Piso", "area": "85"},
        tone="professional",
        language="es"
    )
    assert job.status == JobStatus.PROCESSING
    assert await balance(db, user.id) == 4

    text = "Luminoso piso de 85 m2 en el centro."
    redirect = await runtime.reconciler.apply_completion(
        CompletionSignal(kind=JobKind.DESCRIPTION, job_id=job.id, result=text),
        SignalChannel.REDIRECT
    )
    await runtime.mailbox.append({"descriptionId": job.id, "text": "A different copy"})
    applied = await runtime.poller.run_once()

    assert redirect == CompletionOutcome.COMPLETED
    assert applied == 1
    job = await JobService(db, JobKind.DESCRIPTION).get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.generated_text == text
    assert job.error_message is None
    assert await balance(db, user.id) == 4


async def test_malformed_webhook_url_fails_and_refunds(db, user, runtime, provider):
    runtime.dispatch_client.transformation_url = "http://provider.test:badport/transform"

    job = await SubmissionService(db, runtime).submit_transformation(user.id, image=IMAGE_DATA_URL, style="modern")

    assert job.status == JobStatus.FAILED
    assert job.failure_reason == FailureReason.DISPATCH_REJECTED
    assert provider.requests == []
    assert await balance(db, user.id) == 5

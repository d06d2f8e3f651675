"""
Job store tests.

Verifies job creation, the history ring buffer, status transitions and
project scoping.
"""
import pytest

from app.exceptions import InvalidTransition, JobNotFound
from app.models.job import JobKind, JobStatus
from app.services.job_service import JobService


def transformation_input(style: str = "modern") -> dict:
    return {
        "original_image_ref": "sha256:" + "0" * 64,
        "original_image_mime": "image/png",
        "style": style,
    }


def description_input() -> dict:
    return {
        "property_data": {"propertyType": "apartment", "bedrooms": 2},
        "tone": "professional",
    }


async def test_create_job_starts_pending(db, user):
    job = await JobService(db, JobKind.TRANSFORMATION).create_job(user.id, **transformation_input())

    assert job.status == JobStatus.PENDING
    assert job.created_at is not None
    assert job.completed_at is None
    assert job.transformed_image_url is None


async def test_description_defaults(db, user):
    job = await JobService(db, JobKind.DESCRIPTION).create_job(user.id, **description_input())

    assert job.length_option == "medium"
    assert job.language == "es"


async def test_history_keeps_the_ten_most_recent_jobs(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    created = [await jobs.create_job(user.id, **transformation_input(f"style-{i}")) for i in range(11)]

    remaining = await jobs.list_all(user_id=user.id)

    assert len(remaining) == 10
    assert await jobs.find_job(created[0].id) is None
    assert [job.id for job in remaining] == [job.id for job in reversed(created[1:])]


async def test_eviction_ignores_status(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION, history_limit=2)
    in_flight = await jobs.create_job(user.id, **transformation_input())
    await jobs.transition(in_flight.id, JobStatus.PROCESSING)
    await jobs.create_job(user.id, **transformation_input())

    await jobs.create_job(user.id, **transformation_input())

    with pytest.raises(JobNotFound):
        await jobs.get_job(in_flight.id)


async def test_history_is_per_kind(db, user):
    transformations = JobService(db, JobKind.TRANSFORMATION, history_limit=2)
    descriptions = JobService(db, JobKind.DESCRIPTION, history_limit=2)
    for _ in range(2):
        await transformations.create_job(user.id, **transformation_input())
    for _ in range(3):
        await descriptions.create_job(user.id, **description_input())

    assert len(await transformations.list_all(user_id=user.id)) == 2
    assert len(await descriptions.list_all(user_id=user.id)) == 2


async def test_history_is_per_user(db, user, make_user):
    other = await make_user("other")
    jobs = JobService(db, JobKind.TRANSFORMATION, history_limit=1)
    mine = await jobs.create_job(user.id, **transformation_input())

    await jobs.create_job(other.id, **transformation_input())

    assert await jobs.find_job(mine.id) is not None


async def test_update_job_renames(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    renamed = await jobs.update_job(job.id, name="Living room")

    assert renamed.name == "Living room"
    assert renamed.status == JobStatus.PENDING


async def test_update_job_rejects_input_fields(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    with pytest.raises(ValueError):
        await jobs.update_job(job.id, style="rustic")


async def test_update_job_follows_state_machine(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())
    await jobs.update_job(job.id, status=JobStatus.PROCESSING)
    await jobs.update_job(job.id, status=JobStatus.COMPLETED, transformed_image_url="https://cdn.test/out.jpg")

    with pytest.raises(InvalidTransition):
        await jobs.update_job(job.id, status=JobStatus.PROCESSING)


async def test_update_unknown_job(db):
    with pytest.raises(JobNotFound):
        await JobService(db, JobKind.DESCRIPTION).update_job("missing", name="x")


async def test_transition_is_guarded_on_current_status(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    first = await jobs.transition(job.id, JobStatus.FAILED, error_message="boom")
    second = await jobs.transition(job.id, JobStatus.COMPLETED, transformed_image_url="https://cdn.test/out.jpg")

    assert first.status == JobStatus.FAILED
    assert second is None
    job = await jobs.get_job(job.id)
    assert job.status == JobStatus.FAILED
    assert job.transformed_image_url is None


async def test_pending_may_complete_directly(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    completed = await jobs.transition(job.id, JobStatus.COMPLETED, transformed_image_url="https://cdn.test/out.jpg")

    assert completed.status == JobStatus.COMPLETED


async def test_get_owned_job_hides_other_users_jobs(db, user, make_user):
    other = await make_user("other")
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    with pytest.raises(JobNotFound):
        await jobs.get_owned_job(job.id, other.id)


async def test_project_listing_and_cascade(db, user):
    jobs = JobService(db, JobKind.DESCRIPTION)
    in_project = await jobs.create_job(user.id, "project-1", **description_input())
    await jobs.create_job(user.id, "project-2", **description_input())

    listed = await jobs.list_by_project("project-1")
    assert [job.id for job in listed] == [in_project.id]

    assert await jobs.delete_by_project("project-1") == 1
    assert await jobs.list_by_project("project-1") == []
    assert len(await jobs.list_all(user_id=user.id)) == 1


async def test_delete_job(db, user):
    jobs = JobService(db, JobKind.TRANSFORMATION)
    job = await jobs.create_job(user.id, **transformation_input())

    await jobs.delete_job(job.id)

    assert await jobs.find_job(job.id) is None
    with pytest.raises(JobNotFound):
        await jobs.delete_job(job.id)

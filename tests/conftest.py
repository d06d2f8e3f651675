"""
Shared fixtures: an in-memory SQLite database, a fake Redis mailbox and a
mock n8n provider behind httpx.MockTransport.
"""
import base64
import json

import fakeredis.aioredis
import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.credit import CreditTransaction  # noqa: F401
from app.models.job import Description, Transformation  # noqa: F401
from app.models.project import Project  # noqa: F401
from app.models.user import User
from app.services.dispatch_service import DispatchClient
from app.services.job_runtime import JobRuntime
from app.services.listener_registry import ListenerRegistry
from app.services.mailbox import RedisMailbox
from app.services.reconciler import CompletionReconciler
from app.services.staging import ImageStager
from app.services.user_service import UserService


TRANSFORM_URL = "https://n8n.test/webhook/transform-image"
DESCRIBE_URL = "https://n8n.test/webhook/describe"
PUBLIC_URL = "https://api.realtor360.test"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))
IMAGE_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


class FakeProvider:
    """Stands in for the n8n webhooks; records every request it receives."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body = {"status": "accepted"}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def user(db):
    return await UserService(db).create(username="agent")


@pytest.fixture
def make_user(db):
    async def _make(username: str, credits: int | None = None) -> User:
        created = await UserService(db).create(username=username)
        if credits is not None:
            await db.execute(update(User).where(User.id == created.id).values(credits=credits))
            await db.commit()
        return created
    return _make


@pytest.fixture
def listeners():
    return ListenerRegistry()


@pytest.fixture
def reconciler(session_factory, listeners):
    return CompletionReconciler(session_factory, listeners)


@pytest.fixture
def stager(tmp_path):
    return ImageStager(tmp_path / "uploads")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
async def dispatch_client(provider):
    client = DispatchClient(
        transformation_url=TRANSFORM_URL,
        description_url=DESCRIBE_URL,
        base_url=PUBLIC_URL,
        transport=httpx.MockTransport(provider.handle),
    )
    yield client
    await client.close()


@pytest.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def mailbox(redis_client):
    return RedisMailbox(redis_client, key="test_webhook_responses")


@pytest.fixture
async def runtime(session_factory, dispatch_client, mailbox, stager):
    runtime = JobRuntime(
        session_factory=session_factory,
        dispatch_client=dispatch_client,
        mailbox=mailbox,
        stager=stager,
    )
    yield runtime
    await runtime.poller.stop()
    await runtime.sweeper.stop()

"""
Process-wide runtime for the job lifecycle.

Built once in the FastAPI lifespan and kept on `app.state.runtime`. Owns
the listener registry, the reconciler, the dispatch client, the mailbox and
both background tasks.
"""
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.logging_config import get_logger
from app.services.dispatch_service import DispatchClient
from app.services.listener_registry import ListenerRegistry
from app.services.mailbox import MailboxPoller, RedisMailbox
from app.services.reconciler import CompletionReconciler
from app.services.staging import ImageStager
from app.services.sweeper import StalenessSweeper


log = get_logger(component="job_runtime")


class JobRuntime:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatch_client: DispatchClient,
        mailbox: RedisMailbox,
        stager: ImageStager | None = None
    ):
        self.session_factory = session_factory
        self.dispatch_client = dispatch_client
        self.mailbox = mailbox
        self.stager = stager or ImageStager()
        self.listeners = ListenerRegistry()
        self.reconciler = CompletionReconciler(session_factory, self.listeners)
        self.poller = MailboxPoller(mailbox, self.reconciler)
        self.sweeper = StalenessSweeper(session_factory, self.reconciler)

    def start(self):
        """Start the mailbox poller and the staleness sweeper."""
        self.poller.start()
        self.sweeper.start()
        log.info("job_runtime_started")

    async def stop(self):
        await self.poller.stop()
        await self.sweeper.stop()
        await self.dispatch_client.close()
        await self.mailbox.close()
        log.info("job_runtime_stopped")


def get_runtime(request: Request) -> JobRuntime:
    """FastAPI dependency returning the runtime built at startup."""
    return request.app.state.runtime

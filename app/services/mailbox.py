"""
Polling mailbox channel.

The provider (or a proxy in front of it) appends completion entries to a
Redis list; `MailboxPoller` reads the list every few seconds, replays each
entry through the reconciler and only then trims what it read.
"""
import json
import time
from typing import Any

import redis.asyncio as redis

from app.config import settings
from app.logging_config import get_logger
from app.routes.metrics import update_mailbox_depth
from app.sentry_config import capture_exception
from app.services.periodic import PeriodicTask
from app.services.reconciler import CompletionReconciler, SignalChannel, signal_from_mailbox_entry


log = get_logger(component="mailbox")


class RedisMailbox:
    """Append-and-trim list of completion entries."""

    def __init__(self, client: redis.Redis, key: str | None = None):
        self.client = client
        self.key = key or settings.MAILBOX_KEY

    async def append(self, entry: dict[str, Any]) -> int:
        """Append one entry; stamps `timestamp` (epoch ms) when missing. Returns the new depth."""
        entry = dict(entry)
        entry.setdefault("timestamp", int(time.time() * 1000))
        return await self.client.rpush(self.key, json.dumps(entry))

    async def peek(self) -> list[dict[str, Any]]:
        """Pending entries, oldest first, without consuming them."""
        return [entry for entry in await self.read() if entry is not None]

    async def read(self) -> list[dict[str, Any] | None]:
        """
        Every pending entry, oldest first, without consuming them.

        Malformed entries come back as None so the list lines up with
        the Redis list for `remove`.
        """
        raw = await self.client.lrange(self.key, 0, -1)
        return [self._decode(item) for item in raw]

    async def remove(self, count: int):
        """Drop the `count` oldest entries; anything appended since stays."""
        if count > 0:
            await self.client.ltrim(self.key, count, -1)

    async def requeue(self, entries: list[dict[str, Any]]):
        """Put entries back at the tail, keeping their original timestamps."""
        if entries:
            await self.client.rpush(self.key, *(json.dumps(entry) for entry in entries))

    async def depth(self) -> int:
        return await self.client.llen(self.key)

    async def clear(self):
        await self.client.delete(self.key)

    async def close(self):
        await self.client.aclose()

    @staticmethod
    def _decode(raw: str | bytes) -> dict[str, Any] | None:
        try:
            entry = json.loads(raw)
        except (TypeError, ValueError):
            log.warning("malformed_mailbox_entry", raw=str(raw)[:200])
            return None
        if not isinstance(entry, dict):
            log.warning("malformed_mailbox_entry", raw=str(raw)[:200])
            return None
        return entry


class MailboxPoller(PeriodicTask):
    """
    Replays mailbox entries through the reconciler.

    Entries are trimmed only after the whole batch was tried. An entry whose
    apply raised (database down, say) is requeued for the next tick; replays
    are discarded by the reconciler as duplicates.
    """

    name = "mailbox_poller"

    def __init__(
        self,
        mailbox: RedisMailbox,
        reconciler: CompletionReconciler,
        interval: float | None = None
    ):
        super().__init__(interval or settings.MAILBOX_POLL_INTERVAL_SECONDS)
        self.mailbox = mailbox
        self.reconciler = reconciler

    async def run_once(self) -> int:
        entries = await self.mailbox.read()

        applied = 0
        retry = []
        for entry in entries:
            if entry is None:
                continue
            try:
                signal = signal_from_mailbox_entry(entry)
            except Exception:
                self.log.exception("mailbox_entry_unreadable", entry=entry)
                capture_exception()
                continue
            if signal is None:
                self.log.warning("mailbox_entry_dropped", entry=entry)
                continue

            try:
                await self.reconciler.apply_completion(signal, SignalChannel.MAILBOX)
                applied += 1
            except Exception:
                self.log.exception("mailbox_entry_failed", job_id=signal.job_id, kind=signal.kind.value)
                capture_exception()
                retry.append(entry)

        await self.mailbox.remove(len(entries))
        await self.mailbox.requeue(retry)
        update_mailbox_depth(await self.mailbox.depth())

        if entries:
            self.log.info("mailbox_drained", entries=len(entries), applied=applied, requeued=len(retry))
        return applied

"""
Expiry Runtime — wires store, queue, notifier, handlers, producers and
services together from Settings and owns their lifecycle.

    async with ExpiryRuntime(settings) as runtime:
        await runtime.groups.create_group(...)

Nothing is module-level: every runtime builds its own queue client, so
tests and multiple workers in one process stay isolated.
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import Settings, get_settings
from database.store_base import BaseDocumentStore
from database.store_factory import create_store
from expiration.handlers import ExpirationHandlers
from expiration.producers import GroupExpiryProducer, PingExpiryProducer, ReactionExpiryProducer
from job_queue.queue import JobQueue, create_job_queue
from job_queue.worker import ExpirationWorker
from notifications.push import ExpoPushClient
from notifications.sender import NotificationSender
from services.groups import GroupService
from services.pings import PingService
from services.reactions import ReactionService

logger = structlog.get_logger()


class ExpiryRuntime:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[BaseDocumentStore] = None,
        queue: Optional[JobQueue] = None,
        push_client: Optional[ExpoPushClient] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.store = store or create_store(s.database)
        self.queue = queue or create_job_queue(s.queue)
        self.push_client = push_client or ExpoPushClient(s.notifications)
        self.notifier = NotificationSender(
            self.store, self.push_client, push_enabled=s.notifications.push_enabled,
        )

        self.handlers = ExpirationHandlers(self.store, self.notifier)
        self.group_producer = GroupExpiryProducer(self.queue, self.store)
        self.reaction_producer = ReactionExpiryProducer(self.queue, self.store)
        self.ping_producer = PingExpiryProducer(self.queue, self.store)

        self.groups = GroupService(self.store, self.notifier, self.group_producer, s.expiry)
        self.reactions = ReactionService(self.store, self.reaction_producer, s.expiry)
        self.pings = PingService(self.store, self.notifier, self.ping_producer)

        self.worker = ExpirationWorker(
            self.queue,
            self.handlers.registry(),
            concurrency=s.queue.worker_concurrency,
            poll_interval_ms=s.queue.poll_interval_ms,
            batch_size=s.queue.claim_batch_size,
        )
        self._started = False

    async def start(self, run_worker: bool = True):
        await self.queue.connect()
        if run_worker:
            await self.worker.start_background()
        self._started = True
        logger.info("expiry_runtime_started",
                    app=self.settings.app_name,
                    store_backend=type(self.store).__name__,
                    queue_backend=type(self.queue).__name__,
                    worker=run_worker)

    async def stop(self):
        if not self._started:
            return
        await self.worker.stop()
        await self.queue.close()
        await self.push_client.close()
        flush_all = getattr(self.store, "flush_all", None)
        if flush_all is not None:
            flush_all()
        self._started = False
        logger.info("expiry_runtime_stopped")

    async def __aenter__(self) -> "ExpiryRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

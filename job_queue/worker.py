"""
Expiration Worker — Pulls due jobs from the queue and dispatches them by type.

Runs as an async task inside the application process or in its own process
(scripts/run_worker.py). For horizontal scaling run several workers against
the same Redis queue; claiming is atomic per job.

  ┌───────────┐ enqueue ┌──────────────┐ claim_due ┌──────────┐ dispatch ┌──────────┐
  │ Producers │────────▶│ delayed set  │──────────▶│  Worker  │─────────▶│ Handlers │
  └───────────┘         └──────────────┘           └────┬─────┘          └──────────┘
        │ cancel               ▲                        │ complete / fail
        └──────────────────────┘                        ▼
                                                   job record

Failure policy: a handler exception marks the job failed and is logged; it
never stops the loop and is not retried. Unknown job types complete as no-ops.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Awaitable, Callable, Optional

from job_queue.jobs import PAYLOAD_TYPES, Job, parse_payload
from job_queue.queue import JobQueue, QueueUnavailableError

logger = structlog.get_logger()

JobHandler = Callable[[Any], Awaitable[Any]]


class ExpirationWorker:
    """
    Consumes due jobs and invokes the handler registered for the payload type.

    Usage:
        worker = ExpirationWorker(queue, handlers.registry())
        await worker.start_background()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: dict[type, JobHandler],
        concurrency: int = 5,
        poll_interval_ms: int = 500,
        batch_size: int = 20,
    ):
        missing = [t.value for t, cls in PAYLOAD_TYPES.items() if cls not in handlers]
        if missing:
            raise ValueError(f"No handler registered for job types: {', '.join(missing)}")

        self.queue = queue
        self.handlers = handlers
        self.concurrency = concurrency
        self.poll_interval = poll_interval_ms / 1000
        self.batch_size = batch_size
        self._semaphore = asyncio.Semaphore(concurrency)
        self._inflight: set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self):
        """Start consuming. Blocks until stop() is called."""
        self._running = True
        logger.info("expiration_worker_starting",
                    queue=self.queue.name,
                    concurrency=self.concurrency)

        while self._running:
            try:
                spawned = await self._claim_and_spawn()
            except asyncio.CancelledError:
                break
            except QueueUnavailableError as e:
                logger.error("worker_queue_unavailable", error=str(e))
                spawned = 0
            if not spawned:
                await asyncio.sleep(self.poll_interval)

    async def start_background(self) -> asyncio.Task:
        """Start consuming in a background task. Returns the task handle."""
        self._task = asyncio.create_task(self.start())
        return self._task

    async def stop(self):
        """Stop claiming new jobs and wait for in-flight jobs to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("expiration_worker_stopped")

    async def run_once(self) -> int:
        """Claim one batch of due jobs and process it to completion."""
        jobs = await self.queue.claim_due(limit=self.batch_size)
        await asyncio.gather(*(self.process(job) for job in jobs))
        return len(jobs)

    # ── Dispatch ──────────────────────────────────────────

    async def _claim_and_spawn(self) -> int:
        free = self.concurrency - len(self._inflight)
        if free <= 0:
            return 0
        jobs = await self.queue.claim_due(limit=min(free, self.batch_size))
        for job in jobs:
            task = asyncio.create_task(self.process(job))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        return len(jobs)

    async def process(self, job: Job):
        """Run a single claimed job. Never raises."""
        async with self._semaphore:
            logger.info("processing_job", job_id=job.job_id, job_type=job.name)
            try:
                payload = parse_payload(job.payload)
                if payload is None:
                    logger.debug("unknown_job_type_dropped", job_id=job.job_id, job_type=job.name)
                    await self.queue.complete(job.job_id)
                    return

                applied = await self.handlers[type(payload)](payload)
                await self.queue.complete(job.job_id)
                logger.info("job_completed",
                            job_id=job.job_id,
                            job_type=job.name,
                            applied=bool(applied))

            except Exception as e:
                logger.error("job_handler_error",
                             job_id=job.job_id,
                             job_type=job.name,
                             error=str(e),
                             exc_info=True)
                try:
                    await self.queue.fail(job.job_id, str(e))
                except QueueUnavailableError as qe:
                    logger.error("job_fail_not_recorded", job_id=job.job_id, error=str(qe))

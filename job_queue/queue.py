"""
Delayed Job Queue — Abstract interface with Redis and in-memory backends.

Topology (Redis, prefix = queue name, default "nightlight-queue"):
  {prefix}:delayed      — sorted set of waiting job ids, score = not_before (ms)
  {prefix}:job:{id}     — hash holding the job record (see Job.to_dict)
  {prefix}:seq          — counter assigning enqueue order

Lifecycle of a job:
  enqueue → waiting ──(not_before elapsed, claimed)──▶ active ─▶ completed | failed
               └──(cancel)──▶ removed

Claiming removes the id from the delayed set with ZREM; only the caller whose
ZREM returns 1 owns the job, so two workers never run the same due job.
Cancellation is advisory: once a job is active it can no longer be removed,
which is why expiration handlers are written as conditional updates.
"""
from __future__ import annotations

import heapq
import itertools
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from config.settings import QueueConfig
from job_queue.jobs import Job, JobPayload, JobState, now_ms

logger = structlog.get_logger()


class QueueUnavailableError(Exception):
    """Raised when the queue backend cannot be reached."""
    pass


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class JobQueue(ABC):
    """Abstract delayed job queue."""

    def __init__(self, name: str = "nightlight-queue"):
        self.name = name

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    async def enqueue(self, payload: JobPayload, delay_ms: int = 0) -> str:
        """
        Schedule ``payload`` to run ``delay_ms`` from now and return the job id.
        Negative delays are clamped to zero (the job is due immediately).
        """
        if delay_ms < 0:
            logger.debug("job_delay_clamped", job_type=payload.type, delay_ms=delay_ms)
            delay_ms = 0
        job = Job(
            name=payload.type,
            payload=payload.to_wire(),
            not_before=now_ms() + int(delay_ms),
        )
        await self._add(job)
        logger.info("job_enqueued",
                    queue=self.name,
                    job_id=job.job_id,
                    job_type=job.name,
                    delay_ms=int(delay_ms))
        return job.job_id

    @abstractmethod
    async def _add(self, job: Job):
        """Persist a new waiting job. Must assign ``job.seq``."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Remove a waiting job. Returns False (not an error) if it is not waiting."""
        ...

    @abstractmethod
    async def claim_due(self, limit: int = 10) -> list[Job]:
        """Claim up to ``limit`` due jobs in (not_before, seq) order and mark them active."""
        ...

    @abstractmethod
    async def complete(self, job_id: str):
        ...

    @abstractmethod
    async def fail(self, job_id: str, error: str = ""):
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def count(self, state: str = JobState.WAITING) -> int:
        ...


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisJobQueue(JobQueue):
    """
    Production queue backed by a Redis sorted set + per-job hashes.
    Finished job records expire after keep_completed_seconds / keep_failed_seconds.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        name: str = "nightlight-queue",
        keep_completed_seconds: int = 3600,
        keep_failed_seconds: int = 86400,
    ):
        super().__init__(name)
        self._redis_url = redis_url
        self._redis = None
        self._keep_completed = keep_completed_seconds
        self._keep_failed = keep_failed_seconds

    @property
    def _delayed_key(self) -> str:
        return f"{self.name}:delayed"

    @property
    def _seq_key(self) -> str:
        return f"{self.name}:seq"

    def _job_key(self, job_id: str) -> str:
        return f"{self.name}:job:{job_id}"

    def _client(self):
        if self._redis is None:
            raise QueueUnavailableError("Redis queue is not connected")
        return self._redis

    async def connect(self):
        import redis.asyncio as aioredis
        from redis.exceptions import RedisError

        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        try:
            await self._redis.ping()
        except RedisError as e:
            raise QueueUnavailableError(f"Cannot reach Redis at {self._redis_url}") from e
        logger.info("redis_queue_connected", url=self._redis_url, queue=self.name)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _add(self, job: Job):
        from redis.exceptions import RedisError

        client = self._client()
        try:
            job.seq = int(await client.incr(self._seq_key))
            pipe = client.pipeline(transaction=True)
            pipe.hset(self._job_key(job.job_id), mapping=job.to_dict())
            pipe.zadd(self._delayed_key, {job.job_id: job.not_before})
            await pipe.execute()
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def cancel(self, job_id: str) -> bool:
        from redis.exceptions import RedisError

        client = self._client()
        try:
            removed = await client.zrem(self._delayed_key, job_id)
            if not removed:
                logger.debug("job_cancel_noop", job_id=job_id)
                return False
            pipe = client.pipeline(transaction=True)
            pipe.hset(self._job_key(job_id), mapping={
                "state": JobState.REMOVED, "finished_at": _utc_iso(),
            })
            pipe.expire(self._job_key(job_id), self._keep_completed)
            await pipe.execute()
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        logger.info("job_cancelled", job_id=job_id)
        return True

    async def claim_due(self, limit: int = 10) -> list[Job]:
        from redis.exceptions import RedisError

        client = self._client()
        claimed: list[Job] = []
        try:
            ready = await client.zrangebyscore(
                self._delayed_key, "-inf", now_ms(), start=0, num=limit,
            )
            for job_id in ready:
                # Only the worker whose ZREM succeeds owns the job
                if not await client.zrem(self._delayed_key, job_id):
                    continue
                data = await client.hgetall(self._job_key(job_id))
                if not data:
                    logger.warning("job_record_missing", job_id=job_id)
                    continue
                await client.hset(self._job_key(job_id), "state", JobState.ACTIVE)
                job = Job.from_dict(data)
                job.state = JobState.ACTIVE
                claimed.append(job)
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e
        claimed.sort(key=lambda j: j.sort_key)
        return claimed

    async def _finish(self, job_id: str, state: str, error: str, ttl: int):
        from redis.exceptions import RedisError

        client = self._client()
        try:
            pipe = client.pipeline(transaction=True)
            pipe.hset(self._job_key(job_id), mapping={
                "state": state, "finished_at": _utc_iso(), "error": error,
            })
            pipe.expire(self._job_key(job_id), ttl)
            await pipe.execute()
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def complete(self, job_id: str):
        await self._finish(job_id, JobState.COMPLETED, "", self._keep_completed)

    async def fail(self, job_id: str, error: str = ""):
        await self._finish(job_id, JobState.FAILED, error, self._keep_failed)

    async def get_job(self, job_id: str) -> Optional[Job]:
        data = await self._client().hgetall(self._job_key(job_id))
        return Job.from_dict(data) if data else None

    async def count(self, state: str = JobState.WAITING) -> int:
        client = self._client()
        if state == JobState.WAITING:
            return await client.zcard(self._delayed_key)
        total = 0
        async for key in client.scan_iter(match=self._job_key("*")):
            if await client.hget(key, "state") == state:
                total += 1
        return total


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryJobQueue(JobQueue):
    """
    Development/test queue backed by a heap.
    Single-process only. Nothing is persisted and records are kept until close().
    """

    def __init__(self, name: str = "nightlight-queue"):
        super().__init__(name)
        self._jobs: dict[str, Job] = {}
        self._waiting: list[tuple[int, int, str]] = []   # (not_before, seq, job_id)
        self._seq = itertools.count(1)
        self._connected = False

    async def connect(self):
        self._connected = True
        logger.info("inmemory_queue_connected", queue=self.name)

    async def close(self):
        self._connected = False
        self._waiting.clear()
        self._jobs.clear()

    async def _add(self, job: Job):
        if not self._connected:
            raise QueueUnavailableError("In-memory queue is not connected")
        job.seq = next(self._seq)
        self._jobs[job.job_id] = job
        heapq.heappush(self._waiting, (job.not_before, job.seq, job.job_id))

    async def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.WAITING:
            logger.debug("job_cancel_noop", job_id=job_id)
            return False
        # Heap entry is discarded lazily by claim_due
        job.state = JobState.REMOVED
        job.finished_at = _utc_iso()
        logger.info("job_cancelled", job_id=job_id)
        return True

    async def claim_due(self, limit: int = 10) -> list[Job]:
        now = now_ms()
        claimed: list[Job] = []
        while self._waiting and len(claimed) < limit and self._waiting[0][0] <= now:
            _, _, job_id = heapq.heappop(self._waiting)
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.WAITING:
                continue
            job.state = JobState.ACTIVE
            claimed.append(job)
        return claimed

    async def complete(self, job_id: str):
        self._finish(job_id, JobState.COMPLETED, "")

    async def fail(self, job_id: str, error: str = ""):
        self._finish(job_id, JobState.FAILED, error)

    def _finish(self, job_id: str, state: str, error: str):
        job = self._jobs.get(job_id)
        if job:
            job.state = state
            job.error = error
            job.finished_at = _utc_iso()

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def count(self, state: str = JobState.WAITING) -> int:
        return sum(1 for j in self._jobs.values() if j.state == state)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_job_queue(config: QueueConfig = None) -> JobQueue:
    """Factory: create a new queue client for the configured backend."""
    config = config or QueueConfig()

    if config.backend == "redis":
        return RedisJobQueue(
            redis_url=config.redis_url,
            name=config.queue_name,
            keep_completed_seconds=config.keep_completed_seconds,
            keep_failed_seconds=config.keep_failed_seconds,
        )
    if config.backend != "memory":
        raise ValueError(f"Unknown queue backend: {config.backend}")
    return InMemoryJobQueue(name=config.queue_name)

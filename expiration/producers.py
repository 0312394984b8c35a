"""
Job Producers — schedule and cancel expiry jobs for expirable entities.

Each producer enqueues the typed job and writes the queue-assigned job id
back onto the entity as ``queue_id``. The id is only a handle for
cancellation; the queue owns the job's real state.

At most one expiry job is outstanding per entity: scheduling cancels the job
referenced by the current ``queue_id`` before enqueueing the new one.

If the queue cannot be reached the entity write is kept and the entity is
flagged ``expiry_unprotected`` (it will not expire on its own); the failure
is logged at error level.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional, Union

from database.store_base import BaseDocumentStore
from job_queue.jobs import GroupExpireJob, JobPayload, PingExpireJob, ReactionExpireJob
from job_queue.queue import JobQueue, QueueUnavailableError
from models.schemas import Collections, find_reaction, utcnow

logger = structlog.get_logger()


def as_utc(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def compute_delay_ms(target: Union[datetime, str], now: Optional[datetime] = None) -> int:
    """Milliseconds from ``now`` until ``target``. Negative when target is in the past."""
    now = as_utc(now) if now is not None else utcnow()
    return int((as_utc(target) - now).total_seconds() * 1000)


class ExpiryProducer:
    """Shared enqueue/cancel plumbing for the per-entity producers."""

    def __init__(self, queue: JobQueue, store: BaseDocumentStore):
        self.queue = queue
        self.store = store

    async def _enqueue(self, payload: JobPayload, delay_ms: int) -> Optional[str]:
        try:
            return await self.queue.enqueue(payload, delay_ms)
        except QueueUnavailableError as e:
            logger.error("expiry_unprotected", job_type=payload.type, error=str(e))
            return None

    async def cancel_job(self, queue_id: Optional[str]) -> bool:
        """Ask the queue to drop a job. Advisory: the job may already be running."""
        if not queue_id:
            return False
        try:
            return await self.queue.cancel(queue_id)
        except QueueUnavailableError as e:
            logger.warning("job_cancel_failed", job_id=queue_id, error=str(e))
            return False


class GroupExpiryProducer(ExpiryProducer):

    async def schedule(
        self,
        group_id: str,
        expires_at: Union[datetime, str],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        group = await self.store.find_by_id(Collections.GROUPS, group_id)
        if group is None:
            logger.warning("group_schedule_skipped", group_id=group_id, reason="not_found")
            return None

        await self.cancel_job(group.get("queue_id"))
        job_id = await self._enqueue(GroupExpireJob(group_id=group_id), compute_delay_ms(expires_at, now))
        await self.store.find_by_id_and_update(Collections.GROUPS, group_id, {"$set": {
            "queue_id": job_id,
            "expiry_unprotected": job_id is None,
            "expiration_datetime": as_utc(expires_at).isoformat(),
        }})
        return job_id

    async def reschedule(self, group_id: str, expires_at: Union[datetime, str]) -> Optional[str]:
        return await self.schedule(group_id, expires_at)

    async def cancel(self, group_id: str) -> bool:
        group = await self.store.find_by_id(Collections.GROUPS, group_id)
        if group is None:
            return False
        cancelled = await self.cancel_job(group.get("queue_id"))
        await self.store.find_by_id_and_update(
            Collections.GROUPS, group_id, {"$unset": {"queue_id": ""}},
        )
        return cancelled


class ReactionExpiryProducer(ExpiryProducer):

    async def schedule(
        self,
        venue_id: str,
        user_id: str,
        emoji: str,
        expires_at: Union[datetime, str],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        match = {"user_id": user_id, "emoji": emoji}
        venue = await self.store.find_by_id(Collections.VENUES, venue_id)
        reaction = find_reaction(venue, user_id, emoji)
        if reaction is None:
            logger.warning("reaction_schedule_skipped", venue_id=venue_id, user_id=user_id)
            return None

        await self.cancel_job(reaction.get("queue_id"))
        job_id = await self._enqueue(
            ReactionExpireJob(user_id=user_id, venue_id=venue_id, emoji=emoji),
            compute_delay_ms(expires_at, now),
        )
        await self.store.find_by_id_and_update(
            Collections.VENUES, venue_id,
            {"$set": {
                "reactions.$.queue_id": job_id,
                "reactions.$.expiry_unprotected": job_id is None,
            }},
            condition={"reactions": {"$elemMatch": match}},
        )
        return job_id

    async def cancel(self, queue_id: Optional[str]) -> bool:
        """Cancel the job of a reaction that is being removed by its owner."""
        return await self.cancel_job(queue_id)


class PingExpiryProducer(ExpiryProducer):

    async def schedule(
        self,
        ping_id: str,
        expires_at: Union[datetime, str],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        ping = await self.store.find_by_id(Collections.PINGS, ping_id)
        if ping is None:
            logger.warning("ping_schedule_skipped", ping_id=ping_id, reason="not_found")
            return None

        await self.cancel_job(ping.get("queue_id"))
        job_id = await self._enqueue(PingExpireJob(ping_id=ping_id), compute_delay_ms(expires_at, now))
        await self.store.find_by_id_and_update(Collections.PINGS, ping_id, {"$set": {
            "queue_id": job_id,
            "expiry_unprotected": job_id is None,
        }})
        return job_id

    async def cancel(self, ping_id: str, queue_id: Optional[str] = None) -> bool:
        if queue_id is None:
            ping = await self.store.find_by_id(Collections.PINGS, ping_id)
            queue_id = (ping or {}).get("queue_id")
        cancelled = await self.cancel_job(queue_id)
        await self.store.find_by_id_and_update(
            Collections.PINGS, ping_id, {"$unset": {"queue_id": ""}},
        )
        return cancelled

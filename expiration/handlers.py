"""
Expiration Handlers — apply the expiry effect for each entity type.

Cancellation and firing can race: a job may still be delivered after the
entity was deleted, responded to or toggled off. Every handler is therefore
a conditional transition that only acts when the entity is still in its
pre-expiry state, and returns False (a silent no-op) otherwise. Running a
handler twice leaves the same end state and fans out notifications once.

Notification fan-out is best effort and happens after the state change;
it is not transactional with it.
"""
from __future__ import annotations

import structlog
from datetime import timedelta
from typing import Any, Awaitable, Callable

from database.store_base import BaseDocumentStore
from expiration.producers import as_utc
from job_queue.jobs import GroupExpireJob, PingExpireJob, ReactionExpireJob
from models.schemas import Collections, NotificationType, PingStatus, display_name, utcnow
from notifications.sender import NotificationSender, notification_data

logger = structlog.get_logger()

# Job due times are whole milliseconds, so a job can fire a hair before the deadline
EXPIRY_CLOCK_SLACK = timedelta(seconds=1)


class ExpirationHandlers:
    """Per-entity expiry logic, dispatched to by the ExpirationWorker."""

    def __init__(self, store: BaseDocumentStore, notifier: NotificationSender):
        self.store = store
        self.notifier = notifier

    def registry(self) -> dict[type, Callable[[Any], Awaitable[bool]]]:
        """Map each job payload type to the handler that expires it."""
        return {
            GroupExpireJob: lambda p: self.expire_group(p.group_id),
            ReactionExpireJob: lambda p: self.expire_reaction(p.user_id, p.venue_id, p.emoji),
            PingExpireJob: lambda p: self.expire_ping(p.ping_id),
        }

    # ── Group ─────────────────────────────────────────────

    async def expire_group(self, group_id: str) -> bool:
        """Delete the group, release its members and withdraw open invitations.

        Only a group whose expiration has passed is deleted. A job that was
        already claimed when the group was extended finds a future deadline
        and leaves the group alone.
        """
        current = await self.store.find_by_id(Collections.GROUPS, group_id)
        if current is None:
            logger.info("group_expire_noop", group_id=group_id, reason="not_found")
            return False

        deadline = current.get("expiration_datetime")
        if deadline and as_utc(deadline) > utcnow() + EXPIRY_CLOCK_SLACK:
            logger.info("group_expire_noop", group_id=group_id, reason="extended", expires_at=deadline)
            return False

        # Matching the deadline read above keeps a concurrent extend from being overridden
        group = await self.store.find_by_id_and_delete(
            Collections.GROUPS, group_id, condition={"expiration_datetime": deadline},
        )
        if group is None:
            logger.info("group_expire_noop", group_id=group_id, reason="changed")
            return False

        members = group.get("members") or []
        invited = group.get("invited_members") or []

        if members:
            # A member who has since moved to another group keeps it
            await self.store.update_many(
                Collections.USERS, members,
                {"$unset": {"current_group": ""}},
                condition={"current_group": group_id},
            )
        if invited:
            await self.store.update_many(
                Collections.USERS, invited,
                {"$pull": {"invited_groups": group_id}},
            )

        result = await self.notifier.send_notifications(
            members,
            "Group expired! 👋",
            "Your group has expired. We hope you had a safe night!",
            notification_data(NotificationType.GROUP_EXPIRED, group_id=group_id),
        )
        result.log(group_id=group_id)

        logger.info("group_expired",
                    group_id=group_id,
                    members=len(members),
                    invited=len(invited))
        return True

    # ── Reaction ──────────────────────────────────────────

    async def expire_reaction(self, user_id: str, venue_id: str, emoji: str) -> bool:
        """Pull the user's emoji reaction from the venue if it is still there."""
        reaction = {"user_id": user_id, "emoji": emoji}
        venue = await self.store.find_by_id_and_update(
            Collections.VENUES, venue_id,
            {"$pull": {"reactions": reaction}},
            condition={"reactions": {"$elemMatch": reaction}},
        )
        if venue is None:
            logger.info("reaction_expire_noop", venue_id=venue_id, user_id=user_id)
            return False

        logger.info("reaction_expired", venue_id=venue_id, user_id=user_id, emoji=emoji)
        return True

    # ── Ping ──────────────────────────────────────────────

    async def expire_ping(self, ping_id: str) -> bool:
        """Move a still-unanswered ping from SENT to EXPIRED and tell both parties."""
        ping = await self.store.find_by_id_and_update(
            Collections.PINGS, ping_id,
            {"$set": {"status": PingStatus.EXPIRED.value}, "$unset": {"queue_id": ""}},
            condition={"status": PingStatus.SENT.value},
        )
        if ping is None:
            logger.info("ping_expire_noop", ping_id=ping_id)
            return False

        sender_id, recipient_id = ping["sender_id"], ping["recipient_id"]
        sender_name = await self._display_name(sender_id)
        recipient_name = await self._display_name(recipient_id)
        data = dict(
            ping_id=ping_id,
            sender_id=sender_id,
            sender_name=sender_name,
            recipient_id=recipient_id,
            recipient_name=recipient_name,
        )

        sender_result = await self.notifier.send_notifications(
            [sender_id],
            "Ping expired ⏰",
            f"{recipient_name} did not respond to your ping.",
            notification_data(NotificationType.PING_EXPIRED_SENDER, **data),
        )
        sender_result.log(ping_id=ping_id)

        recipient_result = await self.notifier.send_notifications(
            [recipient_id],
            "Ping expired ⏰",
            f"You did not respond to {sender_name}'s ping in time.",
            notification_data(NotificationType.PING_EXPIRED_RECIPIENT, **data),
        )
        recipient_result.log(ping_id=ping_id)

        logger.info("ping_expired", ping_id=ping_id)
        return True

    async def _display_name(self, user_id: str) -> str:
        return display_name(await self.store.find_by_id(Collections.USERS, user_id))

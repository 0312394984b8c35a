"""
Group Service — create, join, leave and dissolve groups.

Every group carries exactly one outstanding groupExpire job, scheduled on
creation and replaced on extension. Explicit deletion cancels the job
before the group document goes away; if the job fires anyway it finds no
group and does nothing.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta
from typing import Any, Optional

from config.settings import ExpiryConfig
from database.store_base import BaseDocumentStore
from expiration.producers import GroupExpiryProducer, as_utc
from models.schemas import Collections, Group, NotificationType, display_name, utcnow
from notifications.sender import NotificationSender, notification_data
from services.errors import InvalidOperationError, NotFoundError

logger = structlog.get_logger()


class GroupService:

    def __init__(
        self,
        store: BaseDocumentStore,
        notifier: NotificationSender,
        producer: GroupExpiryProducer,
        expiry_config: ExpiryConfig = None,
    ):
        self.store = store
        self.notifier = notifier
        self.producer = producer
        self.expiry_config = expiry_config or ExpiryConfig()

    async def create_group(
        self,
        creator_id: str,
        name: str,
        invited_members: list[str],
        expiration_datetime: Optional[datetime] = None,
    ) -> dict[str, Any]:
        invited = [u for u in dict.fromkeys(invited_members) if u and u != creator_id]
        if not invited:
            raise InvalidOperationError("Group must have at least one invited member!")

        creator = await self._get_user(creator_id)
        if creator.get("current_group"):
            raise InvalidOperationError("User is already in a group!")

        expires_at = (
            as_utc(expiration_datetime) if expiration_datetime
            else utcnow() + timedelta(hours=self.expiry_config.group_expiry_hours)
        )
        group = Group(
            name=name,
            members=[creator_id],
            invited_members=invited,
            expiration_datetime=expires_at,
        )
        await self.store.insert(Collections.GROUPS, group.to_document())
        await self.store.find_by_id_and_update(
            Collections.USERS, creator_id, {"$set": {"current_group": group.id}},
        )
        await self.store.update_many(
            Collections.USERS, invited, {"$addToSet": {"invited_groups": group.id}},
        )

        await self.producer.schedule(group.id, expires_at)

        result = await self.notifier.send_notifications(
            invited,
            "New group invite! 🎉",
            f"{display_name(creator)} invited you to join {name}.",
            notification_data(NotificationType.GROUP_INVITE, group_id=group.id, sender_id=creator_id),
            persist_only=True,
        )
        result.log(group_id=group.id)

        logger.info("group_created", group_id=group.id, creator_id=creator_id,
                    invited=len(invited), expires_at=expires_at.isoformat())
        return await self.store.find_by_id(Collections.GROUPS, group.id)

    async def delete_group(self, group_id: str) -> Optional[dict[str, Any]]:
        """Delete the group. Returns None when its expiry job deleted it first."""
        await self._get_group(group_id)

        # Cancel first so a late firing finds nothing to do
        await self.producer.cancel(group_id)
        group = await self.store.find_by_id_and_delete(Collections.GROUPS, group_id)
        if group is None:
            logger.info("group_delete_noop", group_id=group_id, reason="already_expired")
            return None
        await self._release_users(group)

        result = await self.notifier.send_notifications(
            group.get("members") or [],
            "Group deleted! 😢",
            "Your group has been deleted.",
            notification_data(NotificationType.GROUP_DELETED, group_id=group_id),
        )
        result.log(group_id=group_id)

        logger.info("group_deleted", group_id=group_id)
        return group

    async def invite_members(self, group_id: str, inviter_id: str, user_ids: list[str]) -> dict[str, Any]:
        group = await self._get_group(group_id)
        if inviter_id not in group.get("members", []):
            raise InvalidOperationError("Only group members can invite!")

        existing = set(group.get("members", [])) | set(group.get("invited_members", []))
        new = [u for u in dict.fromkeys(user_ids) if u not in existing]
        if not new:
            return group
        for user_id in new:
            await self._get_user(user_id)

        for user_id in new:
            await self.store.find_by_id_and_update(
                Collections.GROUPS, group_id, {"$addToSet": {"invited_members": user_id}},
            )
        await self.store.update_many(
            Collections.USERS, new, {"$addToSet": {"invited_groups": group_id}},
        )

        inviter = await self._get_user(inviter_id)
        result = await self.notifier.send_notifications(
            new,
            "New group invite! 🎉",
            f"{display_name(inviter)} invited you to join {group.get('name', 'a group')}.",
            notification_data(NotificationType.GROUP_INVITE, group_id=group_id, sender_id=inviter_id),
            persist_only=True,
        )
        result.log(group_id=group_id)
        return await self.store.find_by_id(Collections.GROUPS, group_id)

    async def accept_invite(self, group_id: str, user_id: str) -> dict[str, Any]:
        group = await self._get_group(group_id)
        user = await self._get_user(user_id)
        if user_id not in group.get("invited_members", []):
            raise InvalidOperationError("User is not invited to this group!")
        if user.get("current_group"):
            raise InvalidOperationError("User is already in a group!")

        updated = await self.store.find_by_id_and_update(
            Collections.GROUPS, group_id,
            {"$pull": {"invited_members": user_id}, "$addToSet": {"members": user_id}},
            condition={"invited_members": {"$in": [user_id]}},
        )
        if updated is None:
            raise InvalidOperationError("User is not invited to this group!")
        await self.store.find_by_id_and_update(
            Collections.USERS, user_id,
            {"$set": {"current_group": group_id}, "$pull": {"invited_groups": group_id}},
        )

        others = [m for m in group.get("members", []) if m != user_id]
        result = await self.notifier.send_notifications(
            others,
            "Group invite accepted! 🎉",
            f"{display_name(user)} joined your group.",
            notification_data(NotificationType.GROUP_INVITE_ACCEPTED, group_id=group_id, user_id=user_id),
        )
        result.log(group_id=group_id)

        logger.info("group_invite_accepted", group_id=group_id, user_id=user_id)
        return updated

    async def decline_invite(self, group_id: str, user_id: str) -> dict[str, Any]:
        group = await self._get_group(group_id)
        user = await self._get_user(user_id)
        if user_id not in group.get("invited_members", []):
            raise InvalidOperationError("User is not invited to this group!")

        updated = await self.store.find_by_id_and_update(
            Collections.GROUPS, group_id, {"$pull": {"invited_members": user_id}},
        )
        await self.store.find_by_id_and_update(
            Collections.USERS, user_id, {"$pull": {"invited_groups": group_id}},
        )

        result = await self.notifier.send_notifications(
            group.get("members", []),
            "Group invite declined 😕",
            f"{display_name(user)} declined your group invite.",
            notification_data(NotificationType.GROUP_INVITE_DECLINED, group_id=group_id, user_id=user_id),
            persist_only=True,
        )
        result.log(group_id=group_id)
        return updated

    async def leave_group(self, group_id: str, user_id: str) -> Optional[dict[str, Any]]:
        """Remove a member. Returns the group, or None if it dissolved because it emptied."""
        group = await self._get_group(group_id)
        if user_id not in group.get("members", []):
            raise InvalidOperationError("User is not a member of this group!")

        updated = await self.store.find_by_id_and_update(
            Collections.GROUPS, group_id, {"$pull": {"members": user_id}},
        )
        await self.store.find_by_id_and_update(
            Collections.USERS, user_id, {"$unset": {"current_group": ""}},
            condition={"current_group": group_id},
        )

        if updated is not None and not updated.get("members"):
            await self.producer.cancel(group_id)
            dissolved = await self.store.find_by_id_and_delete(
                Collections.GROUPS, group_id, condition={"members": []},
            )
            if dissolved is not None:
                await self._release_users(dissolved)
                logger.info("group_dissolved", group_id=group_id)
            return None

        logger.info("group_left", group_id=group_id, user_id=user_id)
        return updated

    async def extend_group(self, group_id: str, expiration_datetime: datetime) -> dict[str, Any]:
        await self._get_group(group_id)
        if as_utc(expiration_datetime) <= utcnow():
            raise InvalidOperationError("Expiration must be in the future!")
        await self.producer.reschedule(group_id, expiration_datetime)
        logger.info("group_extended", group_id=group_id,
                    expires_at=as_utc(expiration_datetime).isoformat())
        return await self.store.find_by_id(Collections.GROUPS, group_id)

    # ── Helpers ───────────────────────────────────────────

    async def _release_users(self, group: dict[str, Any]):
        group_id = group["id"]
        if group.get("members"):
            await self.store.update_many(
                Collections.USERS, group["members"],
                {"$unset": {"current_group": ""}},
                condition={"current_group": group_id},
            )
        if group.get("invited_members"):
            await self.store.update_many(
                Collections.USERS, group["invited_members"],
                {"$pull": {"invited_groups": group_id}},
            )

    async def _get_group(self, group_id: str) -> dict[str, Any]:
        group = await self.store.find_by_id(Collections.GROUPS, group_id)
        if group is None:
            raise NotFoundError("Group not found!")
        return group

    async def _get_user(self, user_id: str) -> dict[str, Any]:
        user = await self.store.find_by_id(Collections.USERS, user_id)
        if user is None:
            raise NotFoundError("User not found!")
        return user

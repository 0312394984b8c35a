"""
Ping Service — "are you okay?" check-ins between two users.

A ping stays SENT until the recipient responds or it expires. Responding
cancels the expiry job and then performs the SENT -> response transition
conditionally, so a concurrently firing expiry and a response can never
both apply.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Union

from database.store_base import BaseDocumentStore
from expiration.producers import PingExpiryProducer, as_utc
from models.schemas import (
    PING_RESPONSES, Collections, NotificationType, Ping, PingStatus, display_name,
)
from notifications.sender import NotificationSender, notification_data
from services.errors import InvalidOperationError, NotFoundError

logger = structlog.get_logger()


class PingService:

    def __init__(
        self,
        store: BaseDocumentStore,
        notifier: NotificationSender,
        producer: PingExpiryProducer,
    ):
        self.store = store
        self.notifier = notifier
        self.producer = producer

    async def send_ping(
        self,
        sender_id: str,
        recipient_id: str,
        message: str,
        expiration_datetime: Union[datetime, str],
    ) -> dict[str, Any]:
        if sender_id == recipient_id:
            raise InvalidOperationError("Cannot ping yourself!")
        sender = await self._get_user(sender_id)
        await self._get_user(recipient_id)

        ping = Ping(
            sender_id=sender_id,
            recipient_id=recipient_id,
            message=message,
            expiration_datetime=as_utc(expiration_datetime),
        )
        await self.store.insert(Collections.PINGS, ping.to_document())
        await self.store.find_by_id_and_update(
            Collections.USERS, sender_id, {"$push": {"sent_pings": ping.id}},
        )
        await self.store.find_by_id_and_update(
            Collections.USERS, recipient_id, {"$push": {"received_pings": ping.id}},
        )

        await self.producer.schedule(ping.id, ping.expiration_datetime)

        sender_name = display_name(sender)
        result = await self.notifier.send_notifications(
            [recipient_id],
            "New ping!📩",
            f"{sender_name}: {message}",
            notification_data(NotificationType.PING_RECEIVED,
                              ping_id=ping.id, sender_id=sender_id, sender_name=sender_name),
            persist_only=True,
        )
        result.log(ping_id=ping.id)

        logger.info("ping_sent", ping_id=ping.id, sender_id=sender_id, recipient_id=recipient_id)
        return await self.store.find_by_id(Collections.PINGS, ping.id)

    async def respond_to_ping(self, ping_id: str, response: Union[PingStatus, str]) -> dict[str, Any]:
        try:
            status = PingStatus(response)
        except ValueError:
            status = None
        if status not in PING_RESPONSES:
            raise InvalidOperationError("Invalid response!")

        ping = await self.store.find_by_id(Collections.PINGS, ping_id)
        if ping is None:
            raise NotFoundError("Ping not found!")

        await self.producer.cancel(ping_id, ping.get("queue_id"))
        updated = await self.store.find_by_id_and_update(
            Collections.PINGS, ping_id,
            {"$set": {"status": status.value}},
            condition={"status": PingStatus.SENT.value},
        )
        if updated is None:
            raise InvalidOperationError("Ping is no longer awaiting a response!")

        recipient = await self.store.find_by_id(Collections.USERS, ping["recipient_id"])
        recipient_name = display_name(recipient)
        okay = status == PingStatus.RESPONDED_OKAY
        result = await self.notifier.send_notifications(
            [ping["sender_id"]],
            "Ping response!📩",
            f"{recipient_name} is {'okay' if okay else 'NOT okay'}.",
            notification_data(
                NotificationType.PING_RESPONDED_OKAY if okay else NotificationType.PING_RESPONDED_NOT_OKAY,
                ping_id=ping_id,
                recipient_id=ping["recipient_id"],
                recipient_name=recipient_name,
            ),
        )
        result.log(ping_id=ping_id)

        logger.info("ping_responded", ping_id=ping_id, status=status.value)
        return updated

    async def remove_ping(self, ping_id: str) -> dict[str, Any]:
        ping = await self.store.find_by_id(Collections.PINGS, ping_id)
        if ping is None:
            raise NotFoundError("Ping not found!")

        await self.producer.cancel_job(ping.get("queue_id"))
        await self.store.find_by_id_and_delete(Collections.PINGS, ping_id)
        await self.store.find_by_id_and_update(
            Collections.USERS, ping["sender_id"], {"$pull": {"sent_pings": ping_id}},
        )
        await self.store.find_by_id_and_update(
            Collections.USERS, ping["recipient_id"], {"$pull": {"received_pings": ping_id}},
        )

        if ping.get("status") == PingStatus.SENT.value:
            result = await self.notifier.send_notifications(
                [ping["recipient_id"]],
                "Ping removed!📤",
                "A ping you received was removed.",
                notification_data(NotificationType.PING_REMOVED, ping_id=ping_id),
                persist_only=True,
            )
            result.log(ping_id=ping_id)

        logger.info("ping_removed", ping_id=ping_id)
        return ping

    async def _get_user(self, user_id: str) -> dict[str, Any]:
        user = await self.store.find_by_id(Collections.USERS, user_id)
        if user is None:
            raise NotFoundError("User not found!")
        return user

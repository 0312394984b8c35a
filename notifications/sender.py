"""
Notification fan-out — persists notifications and pushes them to devices.

sendNotifications is fire-and-forget from the caller's point of view: it
never raises. Every per-recipient failure is captured in the returned
FanoutResult, which callers only inspect for logging.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, field
from typing import Any, Optional

from database.store_base import BaseDocumentStore
from models.schemas import Collections, Notification, NotificationType, utcnow
from notifications.push import ExpoPushClient

logger = structlog.get_logger()


def notification_data(notification_type: NotificationType, **fields: Any) -> dict[str, Any]:
    """Build the ``data`` blob attached to a notification."""
    return {
        "notification_type": notification_type.value,
        "sent_datetime": utcnow().isoformat(),
        **fields,
    }


@dataclass
class FanoutResult:
    """Outcome of one fan-out batch."""
    notification_type: str = ""
    recipients: int = 0
    persisted: list[str] = field(default_factory=list)     # notification ids
    pushed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def log(self, **context: Any) -> None:
        if self.ok:
            logger.info("notifications_sent",
                        notification_type=self.notification_type,
                        recipients=self.recipients,
                        persisted=len(self.persisted),
                        pushed=self.pushed,
                        **context)
        else:
            logger.warning("notifications_partially_failed",
                           notification_type=self.notification_type,
                           recipients=self.recipients,
                           persisted=len(self.persisted),
                           failures=self.failures,
                           **context)


class NotificationSender:
    """
    Persists a notification document per recipient and, unless the call is
    persist-only, pushes it to the recipient's registered Expo token.
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        push_client: Optional[ExpoPushClient] = None,
        push_enabled: bool = True,
    ):
        self.store = store
        self.push_client = push_client
        self.push_enabled = push_enabled and push_client is not None

    async def send_notifications(
        self,
        recipient_ids: list[str],
        title: str,
        body: str,
        data: dict[str, Any],
        persist_only: bool = False,
    ) -> FanoutResult:
        result = FanoutResult(notification_type=data.get("notification_type", ""))
        recipients = [r for r in dict.fromkeys(recipient_ids) if r]
        result.recipients = len(recipients)
        if not recipients:
            return result

        await asyncio.gather(*(
            self._send_one(result, rid, title, body, data, persist_only)
            for rid in recipients
        ))
        return result

    async def _send_one(
        self,
        result: FanoutResult,
        recipient_id: str,
        title: str,
        body: str,
        data: dict[str, Any],
        persist_only: bool,
    ):
        notification = Notification(
            recipient_id=recipient_id,
            title=title,
            body=body,
            data=data,
            notification_type=result.notification_type,
        )
        try:
            await self.store.insert(Collections.NOTIFICATIONS, notification.to_document())
            result.persisted.append(notification.id)
        except Exception as e:
            result.failures.append({"recipient_id": recipient_id, "stage": "persist", "error": str(e)})
            return

        if persist_only or not self.push_enabled:
            return

        try:
            user = await self.store.find_by_id(Collections.USERS, recipient_id)
            token = (user or {}).get("notification_token")
            if token:
                await self.push_client.send(token, title, body, data)
                result.pushed += 1
        except Exception as e:
            result.failures.append({"recipient_id": recipient_id, "stage": "push", "error": str(e)})

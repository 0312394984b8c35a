"""
Core data models for the Nightlight backend.
These are the document shapes shared by the services, producers and
expiration handlers.

Documents live in the document store as plain dicts; the pydantic models
below build and validate them (``to_document`` / ``from_document``).
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:24]


def display_name(user: Optional[dict[str, Any]]) -> str:
    """Full name of a stored user document, for notification text."""
    user = user or {}
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip() or "Someone"


def find_reaction(venue: Optional[dict[str, Any]], user_id: str, emoji: str) -> Optional[dict[str, Any]]:
    """The embedded reaction of ``user_id`` with ``emoji`` on a stored venue, if any."""
    return next(
        (r for r in (venue or {}).get("reactions", [])
         if r.get("user_id") == user_id and r.get("emoji") == emoji),
        None,
    )


# ──────────────────────────────────────────────────────────────
#  Collections & constants
# ──────────────────────────────────────────────────────────────

class Collections:
    USERS = "users"
    GROUPS = "groups"
    VENUES = "venues"
    PINGS = "pings"
    NOTIFICATIONS = "notifications"


REACTION_EMOJIS = ["🔥", "⚠️", "🛡", "💩", "🎉"]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class PingStatus(str, Enum):
    SENT = "SENT"
    EXPIRED = "EXPIRED"
    RESPONDED_OKAY = "RESPONDED_OKAY"
    RESPONDED_NOT_OKAY = "RESPONDED_NOT_OKAY"


PING_RESPONSES = {PingStatus.RESPONDED_OKAY, PingStatus.RESPONDED_NOT_OKAY}


class NotificationType(str, Enum):
    GROUP_INVITE = "groupInvite"
    GROUP_INVITE_ACCEPTED = "groupInviteAccepted"
    GROUP_INVITE_DECLINED = "groupInviteDeclined"
    GROUP_EXPIRED = "groupExpired"
    GROUP_DELETED = "groupDeleted"
    PING_RECEIVED = "pingReceived"
    PING_RESPONDED_OKAY = "pingRespondedOkay"
    PING_RESPONDED_NOT_OKAY = "pingRespondedNotOkay"
    PING_REMOVED = "pingRemoved"
    PING_EXPIRED_SENDER = "pingExpiredSender"
    PING_EXPIRED_RECIPIENT = "pingExpiredRecipient"


# ──────────────────────────────────────────────────────────────
#  Document base
# ──────────────────────────────────────────────────────────────

class Document(BaseModel):
    id: str = Field(default_factory=new_id)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        return cls.model_validate(data)


# ──────────────────────────────────────────────────────────────
#  User
# ──────────────────────────────────────────────────────────────

class User(Document):
    first_name: str
    last_name: str
    current_group: Optional[str] = None       # group id while the user is in a group
    invited_groups: list[str] = []            # pending group invitations
    sent_pings: list[str] = []
    received_pings: list[str] = []
    notification_token: Optional[str] = None  # Expo push token

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ──────────────────────────────────────────────────────────────
#  Expirable entities
# ──────────────────────────────────────────────────────────────

class Group(Document):
    """An ephemeral group of users heading out together."""
    name: str
    members: list[str] = []
    invited_members: list[str] = []
    creation_datetime: datetime = Field(default_factory=utcnow)
    expiration_datetime: datetime
    queue_id: Optional[str] = None            # handle of the pending groupExpire job
    expiry_unprotected: bool = False          # set when the expiry job could not be enqueued


class VenueReaction(BaseModel):
    """An emoji reaction embedded in a venue's ``reactions`` array."""
    user_id: str
    emoji: str
    queue_id: Optional[str] = None
    expiry_unprotected: bool = False


class Venue(Document):
    name: str
    address: str = ""
    location: dict[str, float] = {}
    reactions: list[VenueReaction] = []


class Ping(Document):
    """A short-lived "are you okay?" message between two users."""
    sender_id: str
    recipient_id: str
    message: str
    sent_datetime: datetime = Field(default_factory=utcnow)
    expiration_datetime: datetime
    status: PingStatus = PingStatus.SENT
    queue_id: Optional[str] = None
    expiry_unprotected: bool = False


# ──────────────────────────────────────────────────────────────
#  Notification
# ──────────────────────────────────────────────────────────────

class Notification(Document):
    recipient_id: str
    title: str
    body: str
    data: dict[str, Any] = {}
    notification_type: str = ""
    delay: int = 0
    created_at: datetime = Field(default_factory=utcnow)

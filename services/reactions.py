"""
Reaction Service — emoji reactions on venues.

A reaction is embedded in the venue document and lives for
``reaction_ttl_minutes`` unless its owner toggles it off first.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timedelta
from typing import Optional

from config.settings import ExpiryConfig
from database.store_base import BaseDocumentStore
from expiration.producers import ReactionExpiryProducer
from models.schemas import REACTION_EMOJIS, Collections, VenueReaction, find_reaction, utcnow
from services.errors import InvalidOperationError, NotFoundError

logger = structlog.get_logger()


class ReactionService:

    def __init__(
        self,
        store: BaseDocumentStore,
        producer: ReactionExpiryProducer,
        expiry_config: ExpiryConfig = None,
    ):
        self.store = store
        self.producer = producer
        self.expiry_config = expiry_config or ExpiryConfig()

    async def toggle_reaction(
        self,
        venue_id: str,
        user_id: str,
        emoji: str,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """Add the reaction, or remove it if present. Returns True when it was added."""
        if emoji not in REACTION_EMOJIS:
            raise InvalidOperationError("Invalid emoji!")

        venue = await self.store.find_by_id(Collections.VENUES, venue_id)
        if venue is None:
            raise NotFoundError("Venue not found!")

        if find_reaction(venue, user_id, emoji) is not None:
            await self.remove_reaction(venue_id, user_id, emoji)
            return False

        reaction = VenueReaction(user_id=user_id, emoji=emoji)
        added = await self.store.find_by_id_and_update(
            Collections.VENUES, venue_id,
            {"$push": {"reactions": reaction.model_dump(mode="json")}},
            condition={"reactions": {"$not": {"$elemMatch": {"user_id": user_id, "emoji": emoji}}}},
        )
        if added is None:
            # A concurrent toggle added it first and owns the expiry job
            logger.info("reaction_add_noop", venue_id=venue_id, user_id=user_id, emoji=emoji)
            return True
        expires_at = expires_at or utcnow() + timedelta(minutes=self.expiry_config.reaction_ttl_minutes)
        await self.producer.schedule(venue_id, user_id, emoji, expires_at)

        logger.info("reaction_added", venue_id=venue_id, user_id=user_id, emoji=emoji)
        return True

    async def remove_reaction(self, venue_id: str, user_id: str, emoji: str):
        match = {"user_id": user_id, "emoji": emoji}
        venue = await self.store.find_by_id(Collections.VENUES, venue_id)
        if venue is None:
            raise NotFoundError("Venue not found!")
        reaction = find_reaction(venue, user_id, emoji)
        if reaction is None:
            raise NotFoundError("Reaction not found!")

        await self.producer.cancel(reaction.get("queue_id"))
        removed = await self.store.find_by_id_and_update(
            Collections.VENUES, venue_id,
            {"$pull": {"reactions": match}},
            condition={"reactions": {"$elemMatch": match}},
        )
        if removed is None:
            # The expiry job won the race
            raise NotFoundError("Reaction not found!")

        logger.info("reaction_removed", venue_id=venue_id, user_id=user_id, emoji=emoji)

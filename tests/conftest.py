"""Shared test fixtures for the Nightlight backend."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from config.settings import ExpiryConfig
from database.store_memory import InMemoryDocumentStore
from expiration.handlers import ExpirationHandlers
from expiration.producers import GroupExpiryProducer, PingExpiryProducer, ReactionExpiryProducer
from job_queue.queue import InMemoryJobQueue
from job_queue.worker import ExpirationWorker
from models.schemas import Collections, Group, Ping, User, Venue, utcnow
from notifications.sender import NotificationSender
from services.groups import GroupService
from services.pings import PingService
from services.reactions import ReactionService


# ──────────────────────────────────────────────────────────────
#  Infrastructure
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest_asyncio.fixture
async def queue():
    q = InMemoryJobQueue(name="test-queue")
    await q.connect()
    yield q
    await q.close()


@pytest.fixture
def push_client():
    client = AsyncMock()
    client.send.return_value = {"data": {"status": "ok"}}
    return client


@pytest.fixture
def notifier(store, push_client):
    return NotificationSender(store, push_client)


@pytest.fixture
def handlers(store, notifier):
    return ExpirationHandlers(store, notifier)


@pytest.fixture
def worker(queue, handlers):
    return ExpirationWorker(queue, handlers.registry(), concurrency=4, poll_interval_ms=10)


@pytest.fixture
def group_producer(queue, store):
    return GroupExpiryProducer(queue, store)


@pytest.fixture
def reaction_producer(queue, store):
    return ReactionExpiryProducer(queue, store)


@pytest.fixture
def ping_producer(queue, store):
    return PingExpiryProducer(queue, store)


@pytest.fixture
def expiry_config():
    return ExpiryConfig(group_expiry_hours=12, reaction_ttl_minutes=60)


@pytest.fixture
def group_service(store, notifier, group_producer, expiry_config):
    return GroupService(store, notifier, group_producer, expiry_config)


@pytest.fixture
def reaction_service(store, reaction_producer, expiry_config):
    return ReactionService(store, reaction_producer, expiry_config)


@pytest.fixture
def ping_service(store, notifier, ping_producer):
    return PingService(store, notifier, ping_producer)


# ──────────────────────────────────────────────────────────────
#  Sample data
# ──────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def users(store):
    """Three users: alice, bob and carol. Only alice and bob have push tokens."""
    docs = {
        "alice": User(id="u_alice", first_name="Alice", last_name="Ng",
                      notification_token="ExponentPushToken[alice]"),
        "bob": User(id="u_bob", first_name="Bob", last_name="Reyes",
                    notification_token="ExponentPushToken[bob]"),
        "carol": User(id="u_carol", first_name="Carol", last_name="Diaz"),
    }
    for user in docs.values():
        await store.insert(Collections.USERS, user.to_document())
    return {name: user.id for name, user in docs.items()}


@pytest_asyncio.fixture
async def venue(store):
    v = Venue(id="v_lounge", name="The Lounge", address="1 Main St")
    await store.insert(Collections.VENUES, v.to_document())
    return v.id


@pytest_asyncio.fixture
async def group(store, users):
    """A group with alice and bob as members and carol invited."""
    g = Group(
        id="g_night_out",
        name="Night out",
        members=[users["alice"], users["bob"]],
        invited_members=[users["carol"]],
        expiration_datetime=utcnow() + timedelta(hours=12),
    )
    await store.insert(Collections.GROUPS, g.to_document())
    for member in g.members:
        await store.find_by_id_and_update(
            Collections.USERS, member, {"$set": {"current_group": g.id}},
        )
    await store.find_by_id_and_update(
        Collections.USERS, users["carol"], {"$addToSet": {"invited_groups": g.id}},
    )
    return g.id


@pytest_asyncio.fixture
async def ping(store, users):
    """A SENT ping from alice to bob."""
    p = Ping(
        id="p_check_in",
        sender_id=users["alice"],
        recipient_id=users["bob"],
        message="Get home safe?",
        expiration_datetime=utcnow() + timedelta(minutes=30),
    )
    await store.insert(Collections.PINGS, p.to_document())
    return p.id


@pytest.fixture
def notifications_for(store):
    """Look up persisted notifications by recipient and optional type."""
    async def _find(recipient_id, notification_type=None):
        condition = {"recipient_id": recipient_id}
        if notification_type:
            condition["notification_type"] = notification_type
        return await store.find(Collections.NOTIFICATIONS, condition)
    return _find

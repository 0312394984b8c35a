"""
End-to-end expiry flows: service call → job on the queue → worker → handler.

Also exercises ExpiryRuntime wiring with in-memory backends.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from config.settings import DatabaseConfig, NotificationConfig, QueueConfig, Settings
from core.runtime import ExpiryRuntime
from job_queue.jobs import JobState
from models.schemas import Collections, NotificationType, PingStatus, utcnow


async def notifications_for_type(store, notification_type):
    return await store.find(Collections.NOTIFICATIONS, {"notification_type": notification_type.value})


class TestExpiryFlows:

    @pytest.mark.asyncio
    async def test_group_expires_after_its_deadline(self, group_service, worker, store, queue, users):
        group = await group_service.create_group(
            users["alice"], "Quick one", [users["bob"]],
            expiration_datetime=utcnow() + timedelta(milliseconds=10),
        )

        await asyncio.sleep(0.02)
        assert await worker.run_once() == 1

        assert await store.find_by_id(Collections.GROUPS, group["id"]) is None
        alice = await store.find_by_id(Collections.USERS, users["alice"])
        bob = await store.find_by_id(Collections.USERS, users["bob"])
        assert alice.get("current_group") is None
        assert group["id"] not in bob["invited_groups"]
        assert (await queue.get_job(group["queue_id"])).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_ping_expires_and_notifies_both_parties(
        self, ping_service, worker, store, users, notifications_for,
    ):
        ping = await ping_service.send_ping(
            users["alice"], users["bob"], "You good?", utcnow() + timedelta(milliseconds=10),
        )

        await asyncio.sleep(0.02)
        await worker.run_once()

        stored = await store.find_by_id(Collections.PINGS, ping["id"])
        assert stored["status"] == PingStatus.EXPIRED.value
        sender = await notifications_for(users["alice"], NotificationType.PING_EXPIRED_SENDER.value)
        recipient = await notifications_for(users["bob"], NotificationType.PING_EXPIRED_RECIPIENT.value)
        assert len(sender) == 1
        assert len(recipient) == 1
        assert sender[0]["body"] != recipient[0]["body"]

    @pytest.mark.asyncio
    async def test_reaction_expires(self, reaction_service, worker, store, users, venue):
        await reaction_service.toggle_reaction(
            venue, users["alice"], "🎉", expires_at=utcnow() + timedelta(milliseconds=10),
        )
        await asyncio.sleep(0.02)
        await worker.run_once()
        assert (await store.find_by_id(Collections.VENUES, venue))["reactions"] == []

    @pytest.mark.asyncio
    async def test_response_before_deadline_wins(self, ping_service, worker, store, users, notifications_for):
        ping = await ping_service.send_ping(
            users["alice"], users["bob"], "You good?", utcnow() + timedelta(milliseconds=10),
        )
        await ping_service.respond_to_ping(ping["id"], PingStatus.RESPONDED_OKAY)

        await asyncio.sleep(0.02)
        assert await worker.run_once() == 0

        stored = await store.find_by_id(Collections.PINGS, ping["id"])
        assert stored["status"] == PingStatus.RESPONDED_OKAY.value
        assert await notifications_for(users["bob"], NotificationType.PING_EXPIRED_RECIPIENT.value) == []

    @pytest.mark.asyncio
    async def test_late_firing_after_delete_is_harmless(self, group_service, handlers, store, users):
        group = await group_service.create_group(users["alice"], "Crew", [users["bob"]])
        await group_service.delete_group(group["id"])

        # Simulates a job that was already claimed when the delete cancelled it
        assert await handlers.expire_group(group["id"]) is False
        assert await notifications_for_type(store, NotificationType.GROUP_EXPIRED) == []

    @pytest.mark.asyncio
    async def test_claimed_job_does_not_expire_extended_group(
        self, group_service, worker, store, queue, users, notifications_for,
    ):
        group = await group_service.create_group(
            users["alice"], "Quick one", [users["bob"]],
            expiration_datetime=utcnow() + timedelta(milliseconds=10),
        )
        await asyncio.sleep(0.02)
        claimed = await queue.claim_due()
        assert [job.job_id for job in claimed] == [group["queue_id"]]

        extended = await group_service.extend_group(group["id"], utcnow() + timedelta(hours=3))
        await worker.process(claimed[0])

        stored = await store.find_by_id(Collections.GROUPS, group["id"])
        assert stored is not None
        assert stored["queue_id"] == extended["queue_id"]
        alice = await store.find_by_id(Collections.USERS, users["alice"])
        assert alice["current_group"] == group["id"]
        assert await notifications_for(users["alice"], NotificationType.GROUP_EXPIRED.value) == []
        assert (await queue.get_job(extended["queue_id"])).state == JobState.WAITING

    @pytest.mark.asyncio
    async def test_delete_racing_expiry_notifies_once(
        self, group_service, handlers, store, users, notifications_for, monkeypatch,
    ):
        group = await group_service.create_group(
            users["alice"], "Quick one", [users["bob"]],
            expiration_datetime=utcnow() + timedelta(milliseconds=10),
        )
        await asyncio.sleep(0.02)

        cancel = group_service.producer.cancel

        async def cancel_while_job_runs(group_id):
            cancelled = await cancel(group_id)
            # The job was claimed before the cancel and runs to completion
            await handlers.expire_group(group_id)
            return cancelled

        monkeypatch.setattr(group_service.producer, "cancel", cancel_while_job_runs)

        assert await group_service.delete_group(group["id"]) is None

        received = await notifications_for(users["alice"])
        assert [n["notification_type"] for n in received] == [NotificationType.GROUP_EXPIRED.value]
        assert await store.find_by_id(Collections.GROUPS, group["id"]) is None

    @pytest.mark.asyncio
    async def test_reaction_toggled_off_then_on_keeps_new_reaction(
        self, reaction_service, store, users, venue,
    ):
        await reaction_service.toggle_reaction(venue, users["alice"], "🔥")
        await reaction_service.toggle_reaction(venue, users["alice"], "🔥")
        await reaction_service.toggle_reaction(venue, users["alice"], "🔥")

        reactions = (await store.find_by_id(Collections.VENUES, venue))["reactions"]
        assert len(reactions) == 1
        assert reactions[0]["queue_id"]


class TestExpiryRuntime:

    @pytest.fixture
    def settings(self):
        return Settings(
            database=DatabaseConfig(store_backend="memory"),
            queue=QueueConfig(backend="memory", poll_interval_ms=5),
            notifications=NotificationConfig(push_enabled=False),
        )

    @pytest.mark.asyncio
    async def test_background_worker_expires_ping(self, settings):
        async with ExpiryRuntime(settings) as runtime:
            for user_id, first in (("u1", "Sam"), ("u2", "Kai")):
                await runtime.store.insert(Collections.USERS, {
                    "id": user_id, "first_name": first, "last_name": "",
                })
            ping = await runtime.pings.send_ping("u1", "u2", "ok?", utcnow() + timedelta(milliseconds=10))

            for _ in range(100):
                stored = await runtime.store.find_by_id(Collections.PINGS, ping["id"])
                if stored["status"] == PingStatus.EXPIRED.value:
                    break
                await asyncio.sleep(0.01)

        assert stored["status"] == PingStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_runtimes_do_not_share_a_queue(self, settings):
        first = ExpiryRuntime(settings)
        second = ExpiryRuntime(settings)
        assert first.queue is not second.queue

    @pytest.mark.asyncio
    async def test_stop_closes_resources(self, settings):
        push_client = AsyncMock()
        runtime = ExpiryRuntime(settings, push_client=push_client)
        await runtime.start(run_worker=False)
        await runtime.stop()
        push_client.close.assert_awaited_once()
        await runtime.stop()
        push_client.close.assert_awaited_once()

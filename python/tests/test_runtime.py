"""Tests for the background drain triggers."""

import asyncio
import random

import pytest

from santachat.client.drainer import DeliveryDrainer
from santachat.client.outbox import OutboxStatus, OutboxStore
from santachat.client.runtime import OutboxRuntime
from santachat.client.storage import MemoryStorage
from santachat.client.transport import ConnectivityMonitor
from santachat.config import ClientSettings
from tests.support.fakes import FakeClock, FakeCredentials, FakeSender, error_attempt


async def wait_until(condition, timeout: float = 2.0) -> None:
    async def poll():
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def store() -> OutboxStore:
    return OutboxStore(
        MemoryStorage(),
        settings=ClientSettings(_env_file=None),
        clock=FakeClock(),
        rng=random.Random(1),
    )


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def runtime(store, sender, connectivity) -> OutboxRuntime:
    drainer = DeliveryDrainer(store, sender, FakeCredentials(), connectivity=connectivity)
    return OutboxRuntime(drainer, "alice", drain_interval_s=60)


class TestOutboxRuntime:
    @pytest.mark.asyncio
    async def test_drains_on_start(self, runtime, store, sender):
        store.enqueue("alice", "bob", "queued before start")

        runtime.start()
        try:
            await wait_until(lambda: store.list_for_user("alice") == [])
            assert runtime.running
            assert len(sender.calls) == 1
        finally:
            await runtime.stop()
        assert not runtime.running

    @pytest.mark.asyncio
    async def test_new_item_triggers_a_drain(self, runtime, store, sender):
        runtime.start()
        try:
            await wait_until(lambda: runtime.drain_count == 1)

            store.enqueue("alice", "bob", "Hello")

            await wait_until(lambda: len(sender.calls) == 1)
            assert store.list_for_user("alice") == []
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_other_users_items_do_not_trigger(self, runtime, store):
        runtime.start()
        try:
            await wait_until(lambda: runtime.drain_count == 1)
            store.enqueue("bob", "alice", "not ours")
            await asyncio.sleep(0.05)
            assert runtime.drain_count == 1
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_coming_online_triggers_a_drain(self, runtime, store, sender, connectivity):
        connectivity.set_online(False)
        store.enqueue("alice", "bob", "written offline")

        runtime.start()
        try:
            await wait_until(lambda: runtime.drain_count == 1)
            assert sender.calls == []
            assert store.list_for_user("alice")[0].attempt_count == 1

            # Let the backoff lapse so the online drain may send
            store.clock.advance(5)
            connectivity.set_online(True)

            await wait_until(lambda: store.list_for_user("alice") == [])
            assert runtime.drain_count == 2
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_interval_drains(self, store, sender, connectivity):
        drainer = DeliveryDrainer(store, sender, FakeCredentials(), connectivity=connectivity)
        runtime = OutboxRuntime(drainer, "alice", drain_interval_s=0.01)

        runtime.start()
        try:
            await wait_until(lambda: runtime.drain_count >= 3)
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_drain_errors_do_not_stop_the_loop(self, store, connectivity):
        class ExplodingDrainer(DeliveryDrainer):
            async def drain(self, from_user_id):
                raise RuntimeError("storage exploded")

        drainer = ExplodingDrainer(store, FakeSender(), FakeCredentials(), connectivity=connectivity)
        runtime = OutboxRuntime(drainer, "alice", drain_interval_s=0.01)

        runtime.start()
        try:
            await wait_until(lambda: runtime.drain_count >= 2)
            assert runtime.running
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, runtime, store):
        runtime.start()
        await wait_until(lambda: runtime.drain_count == 1)
        await runtime.stop()

        store.enqueue("alice", "bob", "after stop")
        await asyncio.sleep(0.02)
        assert runtime.drain_count == 1

    @pytest.mark.asyncio
    async def test_retrying_a_failed_item_triggers_a_drain(self, store, connectivity):
        sender = FakeSender(error_attempt(503), error_attempt(400, "E_INVALID_REQUEST"))
        drainer = DeliveryDrainer(store, sender, FakeCredentials(), connectivity=connectivity)
        runtime = OutboxRuntime(drainer, "alice", drain_interval_s=60)
        item = store.enqueue("alice", "bob", "Hello")

        runtime.start()
        try:
            await wait_until(lambda: len(sender.calls) == 1)
            assert store.get(item.client_message_id).attempt_count == 1

            # Backed off; once the delay lapses, a drain hits the permanent 400
            store.clock.advance(600)
            runtime.trigger("manual")
            await wait_until(lambda: store.get(item.client_message_id).status == OutboxStatus.FAILED)
            assert store.get(item.client_message_id).attempt_count == 1
            drains_before_retry = runtime.drain_count

            assert store.retry("alice", item.client_message_id)

            await wait_until(lambda: store.list_for_user("alice") == [])
            assert len(sender.calls) == 3
            assert runtime.drain_count == drains_before_retry + 1
        finally:
            await runtime.stop()

    @pytest.mark.asyncio
    async def test_backoff_reschedule_does_not_trigger_a_drain(self, store, connectivity):
        sender = FakeSender(error_attempt(503))
        drainer = DeliveryDrainer(store, sender, FakeCredentials(), connectivity=connectivity)
        runtime = OutboxRuntime(drainer, "alice", drain_interval_s=60)
        store.enqueue("alice", "bob", "Hello")

        runtime.start()
        try:
            await wait_until(lambda: len(sender.calls) == 1)
            await asyncio.sleep(0.05)
            assert runtime.drain_count == 1
            assert len(sender.calls) == 1
        finally:
            await runtime.stop()

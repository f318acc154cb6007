"""Tests for the durable outbox store."""

import json
import random
from datetime import timedelta

import pytest

from santachat.client.outbox import OUTBOX_STORAGE_KEY, OutboxItem, OutboxStatus, OutboxStore
from santachat.client.storage import MemoryStorage
from santachat.config import ClientSettings
from santachat.errors import ErrorKind, InvalidPayload
from santachat.routing import conversation_id
from santachat.timeutil import format_iso
from tests.support.fakes import FakeClock

CONV = conversation_id("alice", "bob")


def make_store(storage=None, clock=None, **settings) -> OutboxStore:
    ids = iter(f"00000000-0000-4000-8000-{n:012d}" for n in range(1, 1000))
    return OutboxStore(
        storage or MemoryStorage(),
        settings=ClientSettings(_env_file=None, **settings),
        clock=clock or FakeClock(),
        rng=random.Random(7),
        id_factory=lambda: next(ids),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> OutboxStore:
    return make_store(clock=clock)


class TestEnqueue:
    def test_creates_pending_item(self, store, clock):
        item = store.enqueue("alice", "bob", "  Hello  ", CONV)

        assert item.status is OutboxStatus.PENDING
        assert item.content == "Hello"
        assert item.attempt_count == 0
        assert item.created_at == format_iso(clock.now())
        assert item.next_attempt_at == item.created_at
        assert store.get(item.client_message_id) == item

    @pytest.mark.parametrize(
        "from_id,to_id,content",
        [("", "bob", "hi"), ("alice", "", "hi"), ("alice", "bob", "   "), ("alice", "bob", None)],
    )
    def test_rejects_invalid_payload(self, store, from_id, to_id, content):
        with pytest.raises(InvalidPayload):
            store.enqueue(from_id, to_id, content)
        assert store.list_for_user("alice") == []

    def test_written_through_as_camel_case_json(self, clock):
        storage = MemoryStorage()
        store = make_store(storage, clock)
        item = store.enqueue("alice", "bob", "Hello", CONV)

        records = json.loads(storage.get_item(OUTBOX_STORAGE_KEY))

        assert records == [
            {
                "clientMessageId": item.client_message_id,
                "fromUserId": "alice",
                "toId": "bob",
                "conversationId": CONV,
                "content": "Hello",
                "createdAt": item.created_at,
                "attemptCount": 0,
                "nextAttemptAt": item.created_at,
                "status": "pending",
                "lastError": None,
                "lastErrorKind": None,
            }
        ]

    def test_survives_restart(self, clock):
        storage = MemoryStorage()
        item = make_store(storage, clock).enqueue("alice", "bob", "Hello", CONV)

        reopened = make_store(storage, clock)

        assert reopened.get(item.client_message_id) == item

    def test_notifies_subscribers(self, store):
        calls = []
        unsubscribe = store.subscribe(lambda: calls.append(1))
        store.enqueue("alice", "bob", "Hello")
        unsubscribe()
        store.enqueue("alice", "bob", "Again")
        assert calls == [1]


class TestQueries:
    def test_list_for_user_oldest_first(self, store, clock):
        first = store.enqueue("alice", "bob", "one", CONV)
        clock.advance(1)
        store.enqueue("bob", "alice", "not alice's")
        clock.advance(1)
        second = store.enqueue("alice", "bob", "two", CONV)

        assert [i.client_message_id for i in store.list_for_user("alice")] == [
            first.client_message_id,
            second.client_message_id,
        ]

    def test_list_pending_filters_conversation(self, store):
        store.enqueue("alice", "bob", "scoped", CONV)
        store.enqueue("alice", "bob", "legacy")

        assert [i.content for i in store.list_pending("alice", CONV)] == ["scoped"]
        assert [i.content for i in store.list_pending("alice")] == ["legacy"]

    def test_list_pending_includes_failed(self, store):
        item = store.enqueue("alice", "bob", "Hello", CONV)
        store.fail(item, "nope", ErrorKind.INVALID)
        assert len(store.list_pending("alice", CONV)) == 1

    def test_corrupt_storage_reads_as_empty(self):
        storage = MemoryStorage()
        storage.set_item(OUTBOX_STORAGE_KEY, "{oops")
        assert make_store(storage).list_for_user("alice") == []

    def test_malformed_records_are_dropped(self, clock):
        storage = MemoryStorage()
        store = make_store(storage, clock)
        good = store.enqueue("alice", "bob", "Hello")
        records = json.loads(storage.get_item(OUTBOX_STORAGE_KEY))
        records.append({"clientMessageId": "broken"})
        storage.set_item(OUTBOX_STORAGE_KEY, json.dumps(records))

        assert store.list_for_user("alice") == [good]


class TestExpiry:
    def test_seven_day_ceiling(self, store, clock):
        item = store.enqueue("alice", "bob", "Hello")

        clock.advance(timedelta(days=7).total_seconds())
        assert not store.is_expired(item)
        clock.advance(1)
        assert store.is_expired(item)

    def test_unparseable_created_at_is_expired(self, store):
        item = store.enqueue("alice", "bob", "Hello")
        assert store.is_expired(item.model_copy(update={"created_at": "whenever"}))

    def test_purge_drops_expired_and_delivered(self, store, clock):
        old = store.enqueue("alice", "bob", "old")
        clock.advance(timedelta(days=8).total_seconds())
        fresh = store.enqueue("alice", "bob", "fresh")
        delivered = store.enqueue("alice", "bob", "done")
        store.replace(delivered.model_copy(update={"status": OutboxStatus.DELIVERED}))

        removed = store.purge_expired_or_delivered("alice")

        assert removed == 2
        assert [i.client_message_id for i in store.list_for_user("alice")] == [
            fresh.client_message_id
        ]

    def test_purge_leaves_other_users_alone(self, store, clock):
        store.enqueue("bob", "alice", "old")
        clock.advance(timedelta(days=8).total_seconds())

        assert store.purge_expired_or_delivered("alice") == 0
        assert store.purge_expired_or_delivered() == 1


class TestRetryScheduling:
    def test_backoff_doubles_then_caps(self):
        store = make_store(retry_max_jitter_s=0)
        delays = [store.next_retry_delay(n) for n in range(1, 12)]

        assert delays[:4] == [2.0, 4.0, 8.0, 16.0]
        assert delays[-1] == 300.0

    def test_backoff_is_non_decreasing_with_jitter(self):
        store = make_store()
        for _ in range(50):
            delays = [store.next_retry_delay(n) for n in range(1, 15)]
            assert all(delay <= 300.0 for delay in delays)
            for earlier, later in zip(delays, delays[1:]):
                # jitter is below one second and each step at least doubles
                # until the cap, where every delay is clamped to the cap
                assert later >= earlier or later == 300.0

    def test_jitter_is_whole_milliseconds_below_bound(self):
        store = make_store(retry_base_delay_s=1.0)
        for _ in range(50):
            jitter = store.next_retry_delay(1) - 1.0
            assert 0 <= jitter < 1.0
            assert round(jitter * 1000) == pytest.approx(jitter * 1000)

    def test_reschedule(self, store, clock):
        item = store.enqueue("alice", "bob", "Hello")

        updated = store.reschedule(item, "Offline", ErrorKind.NETWORK)

        assert updated.attempt_count == 1
        assert updated.status is OutboxStatus.PENDING
        assert updated.last_error == "Offline"
        assert updated.last_error_kind is ErrorKind.NETWORK
        next_at = updated.next_attempt_at
        assert next_at > format_iso(clock.now() + timedelta(seconds=1.999))
        assert next_at < format_iso(clock.now() + timedelta(seconds=3.001))
        assert store.get(item.client_message_id) == updated

    def test_fail_then_manual_retry(self, store, clock):
        item = store.enqueue("alice", "bob", "Hello")
        failed = store.fail(item, None, ErrorKind.CONFLICT)

        assert failed.status is OutboxStatus.FAILED
        assert failed.next_attempt_at is None
        assert failed.last_error == "Permanent delivery failure"

        clock.advance(60)
        assert store.retry("alice", item.client_message_id)

        retried = store.get(item.client_message_id)
        assert retried.status is OutboxStatus.PENDING
        assert retried.next_attempt_at == format_iso(clock.now())
        assert retried.last_error is None

    def test_retry_rejects_other_users_items(self, store):
        item = store.enqueue("alice", "bob", "Hello")
        assert not store.retry("bob", item.client_message_id)
        assert not store.retry("alice", "missing")


class TestDeliveryPayload:
    def test_uses_enqueue_time_as_client_created_at(self, store):
        item = store.enqueue("alice", "bob", "Hello", CONV)
        assert item.delivery_payload() == {
            "toId": "bob",
            "content": "Hello",
            "conversationId": CONV,
            "clientMessageId": item.client_message_id,
            "clientCreatedAt": item.created_at,
        }

    def test_reads_legacy_records(self):
        record = {
            "clientMessageId": "00000000-0000-4000-8000-000000000001",
            "fromUserId": "alice",
            "toId": "bob",
            "content": "Hi",
            "createdAt": "2024-12-01T10:00:00.000Z",
            "status": "delivered",
        }
        item = OutboxItem.model_validate(record)
        assert item.status is OutboxStatus.DELIVERED
        assert item.conversation_id is None

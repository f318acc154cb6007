"""Durable outbox of messages not yet confirmed by the server.

The whole outbox lives under a single storage key as a JSON array of
camelCase records, shared by every user of the installation. Every mutation
writes through to storage before returning and then notifies subscribers,
so a crash right after a send never loses the queued message.

Item lifecycle:
- enqueue() creates a pending item (attemptCount=0, nextAttemptAt=now)
- the drainer reschedules it (attemptCount+1, backoff) or marks it failed
- delivery removes it; retry() puts a failed item back to pending
- items older than the age ceiling are dropped without notice

``delivered`` only appears in records written by older clients; such items
are purged rather than sent again.
"""

import json
import random
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from santachat.client.clock import Clock, SystemClock
from santachat.client.storage import LocalStorage
from santachat.config import ClientSettings
from santachat.errors import ErrorKind, InvalidPayload
from santachat.logging import get_logger
from santachat.timeutil import EPOCH, format_iso, parse_iso

logger = get_logger(__name__)

OUTBOX_STORAGE_KEY = "secret-santa-message-outbox-v1"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"
    DELIVERED = "delivered"


class OutboxItem(BaseModel):
    """One queued outgoing message. ``client_message_id`` is its idempotency key."""

    client_message_id: str
    from_user_id: str
    to_id: str
    conversation_id: str | None = None
    content: str
    created_at: str
    attempt_count: int = 0
    next_attempt_at: str | None = None
    status: OutboxStatus = OutboxStatus.PENDING
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    def created_at_dt(self) -> datetime | None:
        return parse_iso(self.created_at)

    def delivery_payload(self) -> dict[str, str | None]:
        """Request body for the send endpoint.

        ``clientCreatedAt`` is the enqueue time, so a replay matches the
        first attempt exactly.
        """
        return {
            "toId": self.to_id,
            "content": self.content,
            "conversationId": self.conversation_id,
            "clientMessageId": self.client_message_id,
            "clientCreatedAt": self.created_at,
        }


def _created_sort_key(item: OutboxItem) -> datetime:
    return item.created_at_dt or EPOCH


Subscriber = Callable[[], None]


class OutboxStore:
    """The single source of truth for queued messages.

    Readers always re-read storage; nothing is cached between calls.
    """

    def __init__(
        self,
        storage: LocalStorage,
        settings: ClientSettings | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.storage = storage
        self.settings = settings or ClientSettings()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._subscribers: list[Subscriber] = []

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _read(self) -> list[OutboxItem]:
        raw = self.storage.get_item(OUTBOX_STORAGE_KEY)
        if not raw:
            return []

        try:
            records = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("outbox_storage_unreadable")
            return []
        if not isinstance(records, list):
            return []

        items = []
        for record in records:
            try:
                items.append(OutboxItem.model_validate(record))
            except ValidationError:
                logger.warning("outbox_record_dropped", record_type=type(record).__name__)
        return items

    def _write(self, items: list[OutboxItem]) -> None:
        payload = [item.model_dump(by_alias=True, mode="json") for item in items]
        self.storage.set_item(OUTBOX_STORAGE_KEY, json.dumps(payload))
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("outbox_subscriber_failed")

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` after every mutation, for any user.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_expired(self, item: OutboxItem, now: datetime | None = None) -> bool:
        """Older than the age ceiling, or with an unreadable creation time."""
        created = item.created_at_dt
        if created is None:
            return True
        now = now or self.clock.now()
        return now - created > timedelta(days=self.settings.outbox_max_age_days)

    def get(self, client_message_id: str) -> OutboxItem | None:
        for item in self._read():
            if item.client_message_id == client_message_id:
                return item
        return None

    def list_for_user(self, from_user_id: str) -> list[OutboxItem]:
        """Every item queued by a user, oldest first, whatever its status."""
        items = [item for item in self._read() if item.from_user_id == from_user_id]
        return sorted(items, key=_created_sort_key)

    def list_pending(
        self, from_user_id: str, conversation_id: str | None = None
    ) -> list[OutboxItem]:
        """Unexpired pending or failed items for one conversation, oldest first."""
        now = self.clock.now()
        return [
            item
            for item in self.list_for_user(from_user_id)
            if item.conversation_id == (conversation_id or None)
            and item.status in (OutboxStatus.PENDING, OutboxStatus.FAILED)
            and not self.is_expired(item, now)
        ]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        from_user_id: str,
        to_id: str,
        content: str,
        conversation_id: str | None = None,
    ) -> OutboxItem:
        """Queue a message for delivery.

        Raises:
            InvalidPayload: A user id is missing or content is blank.
        """
        normalized = content.strip() if isinstance(content, str) else ""
        if not from_user_id or not to_id or not normalized:
            raise InvalidPayload("Invalid outbox enqueue payload")

        now = format_iso(self.clock.now())
        item = OutboxItem(
            client_message_id=self.id_factory(),
            from_user_id=from_user_id,
            to_id=to_id,
            conversation_id=conversation_id or None,
            content=normalized,
            created_at=now,
            attempt_count=0,
            next_attempt_at=now,
            status=OutboxStatus.PENDING,
        )

        items = self._read()
        items.append(item)
        items.sort(key=_created_sort_key)
        self._write(items)

        logger.info(
            "outbox_item_enqueued",
            client_message_id=item.client_message_id,
            conversation_id=item.conversation_id,
        )
        return item

    def replace(self, updated: OutboxItem) -> bool:
        """Swap in a new version of an item. Returns False if it is gone."""
        items = self._read()
        for index, item in enumerate(items):
            if item.client_message_id == updated.client_message_id:
                items[index] = updated
                self._write(items)
                return True
        return False

    def remove(self, client_message_id: str) -> bool:
        items = self._read()
        remaining = [item for item in items if item.client_message_id != client_message_id]
        if len(remaining) == len(items):
            return False
        self._write(remaining)
        return True

    def retry(self, from_user_id: str, client_message_id: str) -> bool:
        """Put an item back in line for immediate delivery (user-initiated retry).

        Returns:
            Whether the user had an item with that id.
        """
        existing = self.get(client_message_id)
        if existing is None or existing.from_user_id != from_user_id:
            return False

        updated = existing.model_copy(
            update={
                "status": OutboxStatus.PENDING,
                "next_attempt_at": format_iso(self.clock.now()),
                "last_error": None,
                "last_error_kind": None,
            }
        )
        self.replace(updated)
        logger.info("outbox_item_retry_requested", client_message_id=client_message_id)
        return True

    def purge_expired_or_delivered(self, from_user_id: str | None = None) -> int:
        """Drop expired and legacy delivered items, optionally for one user only.

        Returns:
            Number of items removed.
        """
        now = self.clock.now()
        items = self._read()

        def keep(item: OutboxItem) -> bool:
            if from_user_id and item.from_user_id != from_user_id:
                return True
            if item.status == OutboxStatus.DELIVERED:
                return False
            return not self.is_expired(item, now)

        remaining = [item for item in items if keep(item)]
        removed = len(items) - len(remaining)
        if removed:
            self._write(remaining)
            logger.info("outbox_items_purged", count=removed)
        return removed

    # -------------------------------------------------------------------------
    # Retry scheduling
    # -------------------------------------------------------------------------

    def next_retry_delay(self, attempt_count: int) -> float:
        """Seconds to wait before attempt ``attempt_count + 1``.

        ``min(cap, min(cap, base * 2^(n-1)) + jitter)`` with jitter drawn in
        whole milliseconds below the jitter bound. The outer cap keeps delays
        non-decreasing once the exponential term saturates.
        """
        exponent = max(0, attempt_count - 1)
        cap = self.settings.retry_max_delay_s
        base_delay = min(cap, self.settings.retry_base_delay_s * (2**exponent))
        jitter_ms = int(self.settings.retry_max_jitter_s * 1000)
        jitter = self.rng.randrange(jitter_ms) / 1000 if jitter_ms > 0 else 0.0
        return min(cap, base_delay + jitter)

    def reschedule(
        self, item: OutboxItem, reason: str | None, kind: ErrorKind | None = None
    ) -> OutboxItem:
        """Record a failed attempt and push the next one out by the backoff delay."""
        attempt_count = item.attempt_count + 1
        delay = self.next_retry_delay(attempt_count)
        updated = item.model_copy(
            update={
                "status": OutboxStatus.PENDING,
                "attempt_count": attempt_count,
                "next_attempt_at": format_iso(self.clock.now() + timedelta(seconds=delay)),
                "last_error": reason or "Retry scheduled",
                "last_error_kind": kind,
            }
        )
        self.replace(updated)
        return updated

    def fail(self, item: OutboxItem, reason: str | None, kind: ErrorKind | None = None) -> OutboxItem:
        """Stop retrying automatically; the user must call retry()."""
        updated = item.model_copy(
            update={
                "status": OutboxStatus.FAILED,
                "next_attempt_at": None,
                "last_error": reason or "Permanent delivery failure",
                "last_error_kind": kind,
            }
        )
        self.replace(updated)
        return updated

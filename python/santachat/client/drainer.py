"""Delivery drainer: the outbox retry engine.

One drain walks a user's outbox oldest first and attempts each eligible
item in turn, never two at once. For every item it re-reads the live record
and then:

- drops it if it has expired
- skips it if it failed permanently or its next attempt is in the future
- reschedules without sending when offline or when no token is available
- sends it; success removes it from the outbox
- on 401, refreshes the token once and resends before classifying
- reschedules retryable failures with backoff, marks the rest failed

Drains are single-flight per user: a drain requested while one is running
for the same user joins the running one instead of starting another, so no
queued item is ever sent twice concurrently.

Delivery failures become item state (status, lastError), never exceptions.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime

from santachat.client.clock import Clock, SystemClock
from santachat.client.outbox import OutboxItem, OutboxStatus, OutboxStore
from santachat.client.transport import (
    ConnectivityMonitor,
    CredentialProvider,
    MessageSender,
    SendAttempt,
)
from santachat.errors import ErrorKind, is_retryable, kind_for_status, normalize_error
from santachat.logging import get_logger, set_client_message_id
from santachat.timeutil import parse_iso

logger = get_logger(__name__)

DELIVERED = "delivered"
RETRIED = "retried"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class DrainResult:
    delivered: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0

    def count(self, outcome: str | None) -> None:
        if outcome is not None:
            setattr(self, outcome, getattr(self, outcome) + 1)


class DeliveryDrainer:
    """Drains outboxes through a MessageSender."""

    def __init__(
        self,
        store: OutboxStore,
        sender: MessageSender,
        credentials: CredentialProvider,
        connectivity: ConnectivityMonitor | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.sender = sender
        self.credentials = credentials
        self.connectivity = connectivity or ConnectivityMonitor()
        self.clock = clock or store.clock or SystemClock()
        self._active: dict[str, asyncio.Task[DrainResult]] = {}

    def is_draining(self, from_user_id: str) -> bool:
        return from_user_id in self._active

    async def drain(self, from_user_id: str) -> DrainResult:
        """Attempt delivery of every eligible item queued by ``from_user_id``."""
        if not from_user_id:
            return DrainResult()

        task = self._active.get(from_user_id)
        if task is None:
            task = asyncio.ensure_future(self._run(from_user_id))
            self._active[from_user_id] = task
            task.add_done_callback(lambda t: self._forget(from_user_id, t))
        else:
            logger.debug("drain_joined", from_user_id=from_user_id)

        # A cancelled caller must not cancel the run other callers share
        return await asyncio.shield(task)

    def _forget(self, from_user_id: str, task: asyncio.Task[DrainResult]) -> None:
        if self._active.get(from_user_id) is task:
            del self._active[from_user_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "drain_crashed",
                from_user_id=from_user_id,
                error=str(task.exception()),
            )

    async def _run(self, from_user_id: str) -> DrainResult:
        result = DrainResult()
        self.store.purge_expired_or_delivered(from_user_id)

        now = self.clock.now()
        candidates = self.store.list_for_user(from_user_id)

        for candidate in candidates:
            item = self.store.get(candidate.client_message_id)
            if item is None:
                continue

            set_client_message_id(item.client_message_id)
            try:
                result.count(await self._attempt(item, now))
            finally:
                set_client_message_id(None)

        if candidates:
            logger.info(
                "drain_completed",
                from_user_id=from_user_id,
                delivered=result.delivered,
                retried=result.retried,
                failed=result.failed,
                skipped=result.skipped,
            )
        return result

    async def _attempt(self, item: OutboxItem, now: datetime) -> str | None:
        if self.store.is_expired(item, now):
            self.store.remove(item.client_message_id)
            logger.info("drain_item_expired", client_message_id=item.client_message_id)
            return None

        if item.status == OutboxStatus.FAILED:
            return SKIPPED

        next_attempt_at = parse_iso(item.next_attempt_at) if item.next_attempt_at else None
        if next_attempt_at is not None and next_attempt_at > now:
            return SKIPPED

        if not self.connectivity.is_online():
            return self._reschedule(item, "Offline - retry scheduled", ErrorKind.NETWORK)

        try:
            token = await self.credentials.get_token(False)
        except Exception as e:
            return self._reschedule(
                item, f"Auth token error: {str(e) or 'Unknown error'}", ErrorKind.AUTH_EXPIRED
            )
        if not token:
            return self._reschedule(item, "Auth token unavailable", ErrorKind.AUTH_EXPIRED)

        try:
            attempt = await self.sender.send(item, token)
        except Exception as e:
            kind = normalize_error(e)
            reason = str(e) or "Network error"
            if is_retryable(kind):
                return self._reschedule(item, reason, kind)
            return self._fail(item, reason, kind)

        if attempt.status_code == 401:
            attempt = await self._resend_with_fresh_token(item, attempt)

        if attempt.ok:
            self.store.remove(item.client_message_id)
            logger.info(
                "drain_item_delivered",
                client_message_id=item.client_message_id,
                attempts=item.attempt_count + 1,
                replayed=attempt.replayed,
            )
            return DELIVERED

        kind = kind_for_status(attempt.status_code)
        if is_retryable(kind):
            return self._reschedule(item, attempt.error_message, kind)
        return self._fail(item, attempt.error_message, kind)

    async def _resend_with_fresh_token(
        self, item: OutboxItem, attempt: SendAttempt
    ) -> SendAttempt:
        """Refresh the credential once and resend; on any trouble keep the 401."""
        try:
            token = await self.credentials.get_token(True)
            if not token:
                return attempt
            return await self.sender.send(item, token)
        except Exception as e:
            logger.warning(
                "drain_token_refresh_failed",
                client_message_id=item.client_message_id,
                error=str(e),
            )
            return attempt

    def _reschedule(self, item: OutboxItem, reason: str, kind: ErrorKind) -> str:
        updated = self.store.reschedule(item, reason, kind)
        logger.info(
            "drain_item_rescheduled",
            client_message_id=item.client_message_id,
            attempt_count=updated.attempt_count,
            next_attempt_at=updated.next_attempt_at,
            error_kind=kind.value,
        )
        return RETRIED

    def _fail(self, item: OutboxItem, reason: str, kind: ErrorKind) -> str:
        self.store.fail(item, reason, kind)
        logger.warning(
            "drain_item_failed",
            client_message_id=item.client_message_id,
            error_kind=kind.value,
            reason=reason,
        )
        return FAILED

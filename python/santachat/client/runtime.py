"""Background triggers that keep a signed-in user's outbox draining.

A drain runs:
- once at start
- every ``drain_interval_s`` seconds
- when a pending item for the user becomes due: a new item, or a failed one
  put back by ``OutboxStore.retry``
- when connectivity comes back online

Triggers that arrive while a drain is running are coalesced into one
follow-up drain. Drain errors are logged; the loop keeps going.
"""

import asyncio
import contextlib
from datetime import datetime

from santachat.client.drainer import DeliveryDrainer
from santachat.client.outbox import OutboxStatus
from santachat.client.transport import ConnectivityMonitor
from santachat.logging import get_logger
from santachat.timeutil import parse_iso

logger = get_logger(__name__)


def _is_due(next_attempt_at: str | None, now: datetime) -> bool:
    scheduled = parse_iso(next_attempt_at) if next_attempt_at else None
    return scheduled is None or scheduled <= now


class OutboxRuntime:
    def __init__(
        self,
        drainer: DeliveryDrainer,
        user_id: str,
        drain_interval_s: float | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ):
        self.drainer = drainer
        self.store = drainer.store
        self.user_id = user_id
        self.drain_interval_s = (
            drain_interval_s
            if drain_interval_s is not None
            else self.store.settings.drain_interval_s
        )
        self.connectivity = connectivity or drainer.connectivity

        self.drain_count = 0
        self._wake = asyncio.Event()
        self._reason = "start"
        self._task: asyncio.Task[None] | None = None
        self._unsubscribers: list = []
        self._known_due: set[tuple[str, str | None]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or not self.user_id:
            return

        self._known_due = self._due_items()
        self._unsubscribers = [
            self.store.subscribe(self._on_outbox_change),
            self.connectivity.subscribe(self._on_connectivity_change),
        ]
        self.trigger("start")
        self._task = asyncio.create_task(self._loop())
        logger.info("outbox_runtime_started", user_id=self.user_id)

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("outbox_runtime_stopped", user_id=self.user_id)

    def trigger(self, reason: str) -> None:
        """Request a drain as soon as the current one (if any) finishes."""
        self._reason = reason
        self._wake.set()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.drain_interval_s)
                reason = self._reason
            except asyncio.TimeoutError:
                reason = "interval"
            self._wake.clear()
            await self._drain(reason)

    async def _drain(self, reason: str) -> None:
        self.drain_count += 1
        logger.debug("outbox_drain_triggered", user_id=self.user_id, reason=reason)
        try:
            await self.drainer.drain(self.user_id)
        except Exception:
            logger.exception("outbox_drain_failed", user_id=self.user_id, reason=reason)

    def _due_items(self) -> set[tuple[str, str | None]]:
        """(id, next_attempt_at) of pending items whose next attempt has arrived.

        A retried item reappears here with a new ``next_attempt_at`` even when
        it was seen before, so it wakes the loop just like a new item.
        """
        now = self.store.clock.now()
        return {
            (item.client_message_id, item.next_attempt_at)
            for item in self.store.list_for_user(self.user_id)
            if item.status == OutboxStatus.PENDING and _is_due(item.next_attempt_at, now)
        }

    def _on_outbox_change(self) -> None:
        due = self._due_items()
        became_due = due - self._known_due
        self._known_due = due
        if became_due:
            self.trigger("outbox_changed")

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.trigger("online")

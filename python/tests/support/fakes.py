"""In-memory stand-ins for the client's network and storage boundaries."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from santachat.client.outbox import OutboxItem
from santachat.client.read_state import WatermarkSnapshot
from santachat.client.transport import SendAttempt
from santachat.services.notifications import IncomingMessageNotification
from tests.factories import at


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.current = start or at(0)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        self.current = value


def ok_attempt(replayed: bool = False) -> SendAttempt:
    body: dict[str, Any] = {"success": True, "message": {}}
    if replayed:
        body["replayed"] = True
    return SendAttempt(status_code=200, body=body)


def error_attempt(status_code: int, code: str = "E_INTERNAL", message: str = "boom") -> SendAttempt:
    return SendAttempt(status_code=status_code, body={"error": {"code": code, "message": message}})


class FakeSender:
    """Replays a script of SendAttempts or exceptions, then succeeds.

    Set ``gate`` to an unset Event to hold every send until the test releases it.
    """

    def __init__(self, *script: SendAttempt | Exception):
        self.script = list(script)
        self.calls: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, item: OutboxItem, token: str) -> SendAttempt:
        self.calls.append((item.client_message_id, token))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.script:
                outcome = self.script.pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            return ok_attempt()
        finally:
            self.in_flight -= 1


class FakeCredentials:
    """Hands out "token-N"; a forced refresh moves to the next number."""

    def __init__(self, available: bool = True, error: Exception | None = None):
        self.available = available
        self.error = error
        self.version = 1
        self.calls: list[bool] = []

    async def get_token(self, force_refresh: bool = False) -> str | None:
        self.calls.append(force_refresh)
        if self.error is not None:
            raise self.error
        if not self.available:
            return None
        if force_refresh:
            self.version += 1
        return f"token-{self.version}"

    @property
    def refreshes(self) -> int:
        return sum(1 for forced in self.calls if forced)


class MemoryWatermarkStore:
    """A durable watermark store whose writes take the store's own clock.

    ``pending_timestamps`` makes snapshots report null until resolve_pending()
    runs, the way a document store does before a server timestamp lands.
    """

    def __init__(self, clock: FakeClock, pending_timestamps: bool = False):
        self.clock = clock
        self.pending_timestamps = pending_timestamps
        self.records: dict[tuple[str, str], Any] = {}
        self.writes: list[tuple[str, str]] = []
        self.fetches = 0
        self.fail_fetch: Exception | None = None
        self.fail_write: Exception | None = None
        self.subscribers: dict[tuple[str, str], list[Callable[[WatermarkSnapshot], None]]] = {}
        self.opened = 0
        self.closed = 0

    def _snapshot(self, key: tuple[str, str]) -> WatermarkSnapshot:
        if key not in self.records:
            return WatermarkSnapshot(exists=False)
        return WatermarkSnapshot(exists=True, last_read_at=self.records[key])

    def _publish(self, key: tuple[str, str]) -> None:
        snapshot = self._snapshot(key)
        for callback in list(self.subscribers.get(key, ())):
            callback(snapshot)

    async def fetch(self, user_id: str, conversation_id: str) -> WatermarkSnapshot:
        self.fetches += 1
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return self._snapshot((user_id, conversation_id))

    async def write(self, user_id: str, conversation_id: str) -> None:
        if self.fail_write is not None:
            raise self.fail_write
        key = (user_id, conversation_id)
        self.writes.append(key)
        self.records[key] = None if self.pending_timestamps else self.clock.now()
        self._publish(key)

    def resolve_pending(self, user_id: str, conversation_id: str) -> None:
        key = (user_id, conversation_id)
        self.records[key] = self.clock.now()
        self._publish(key)

    def write_from_other_device(self, user_id: str, conversation_id: str, value: Any) -> None:
        key = (user_id, conversation_id)
        self.records[key] = value
        self._publish(key)

    def subscribe(
        self,
        user_id: str,
        conversation_id: str,
        callback: Callable[[WatermarkSnapshot], None],
    ) -> Callable[[], None]:
        key = (user_id, conversation_id)
        self.subscribers.setdefault(key, []).append(callback)
        self.opened += 1
        callback(self._snapshot(key))

        def unsubscribe() -> None:
            self.subscribers[key].remove(callback)
            self.closed += 1

        return unsubscribe


class ServerTimestamp:
    """Mimics a document-store timestamp object."""

    def __init__(self, value: datetime):
        self.value = value

    def to_datetime(self) -> datetime:
        return self.value


class RecordingDispatcher:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent: list[IncomingMessageNotification] = []

    def dispatch(self, notification: IncomingMessageNotification) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(notification)

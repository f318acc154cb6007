"""Client-side read-state synchronizer.

Keeps one watermark per (user, conversation) in three places:

- an in-memory cache, authoritative for the UI and updated immediately
- a durable store, written at most once per debounce window
- a live subscription on the durable record, so a read on another device
  updates this one without calling mark_read here

Every watermark leaves this module as an ISO string. Durable stores may
hand back server timestamp objects, datetimes, strings, or null while a
server timestamp is pending; all of them go through normalize_watermark().

Per conversation, hydration moves UNKNOWN → HYDRATING → SYNCED. Unread
counts read as zero until SYNCED so a badge never flashes from a stale or
missing watermark. Per key, durable writes move
IDLE → PENDING_WRITE → FLUSHED; another mark_read during PENDING_WRITE
restarts the window and the single write that follows covers both.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from santachat.client.clock import Clock, SystemClock
from santachat.client.subscriptions import SubscriptionRegistry, Unsubscribe
from santachat.logging import get_logger
from santachat.routing import RoutableMessage
from santachat.timeutil import EPOCH_ISO, format_iso
from santachat.unread import derive_unread, later_watermark, normalize_watermark

logger = get_logger(__name__)

DEFAULT_DEBOUNCE_S = 2.0


class SyncState(str, Enum):
    UNKNOWN = "unknown"
    HYDRATING = "hydrating"
    SYNCED = "synced"


class WriteState(str, Enum):
    IDLE = "idle"
    PENDING_WRITE = "pending_write"
    FLUSHED = "flushed"


@dataclass(frozen=True)
class WatermarkSnapshot:
    """One read of a durable watermark record.

    ``last_read_at`` is whatever the store holds, in any supported shape,
    and may be None while a server-assigned timestamp is still pending.
    """

    exists: bool
    last_read_at: Any = None


class WatermarkStore(Protocol):
    async def fetch(self, user_id: str, conversation_id: str) -> WatermarkSnapshot: ...

    async def write(self, user_id: str, conversation_id: str) -> None:
        """Persist "read as of now", with the store assigning the timestamp."""
        ...

    def subscribe(
        self,
        user_id: str,
        conversation_id: str,
        callback: Callable[[WatermarkSnapshot], None],
    ) -> Unsubscribe: ...


WatermarkListener = Callable[[str], None]
Key = tuple[str, str]


class ReadStateSynchronizer:
    def __init__(
        self,
        store: WatermarkStore,
        registry: SubscriptionRegistry | None = None,
        clock: Clock | None = None,
        debounce_s: float = DEFAULT_DEBOUNCE_S,
        guard_monotonic: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.registry = registry or SubscriptionRegistry()
        self.clock = clock or SystemClock()
        self.debounce_s = debounce_s
        self.guard_monotonic = guard_monotonic
        self._sleep = sleep

        self._cache: dict[Key, str] = {}
        self._sync: dict[Key, SyncState] = {}
        self._writes: dict[Key, WriteState] = {}
        self._timers: dict[Key, asyncio.Task[None]] = {}
        self._listeners: dict[Key, list[WatermarkListener]] = {}

    # -------------------------------------------------------------------------
    # State inspection
    # -------------------------------------------------------------------------

    def cached(self, user_id: str, conversation_id: str) -> str | None:
        """The cached watermark, without touching the durable store."""
        return self._cache.get((user_id, conversation_id))

    def sync_state(self, user_id: str, conversation_id: str) -> SyncState:
        return self._sync.get((user_id, conversation_id), SyncState.UNKNOWN)

    def write_state(self, user_id: str, conversation_id: str) -> WriteState:
        return self._writes.get((user_id, conversation_id), WriteState.IDLE)

    def clear_cache(self) -> None:
        """Forget every cached watermark (sign-out, tests). Pending writes are kept."""
        self._cache.clear()
        self._sync.clear()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_watermark(self, user_id: str, conversation_id: str) -> str:
        """Cache first, then the durable store, then the epoch.

        Store failures fall back to the cached value (or the epoch) and
        leave the conversation un-synced.
        """
        if not user_id or not conversation_id:
            return EPOCH_ISO

        key = (user_id, conversation_id)
        if key in self._cache:
            return self._cache[key]

        self._sync[key] = SyncState.HYDRATING
        try:
            snapshot = await self.store.fetch(user_id, conversation_id)
        except Exception as e:
            logger.warning(
                "last_read_fetch_failed",
                conversation_id=conversation_id,
                error=str(e),
            )
            if self._sync.get(key) == SyncState.HYDRATING:
                self._sync[key] = SyncState.UNKNOWN
            return self._cache.get(key, EPOCH_ISO)

        self._accept(key, snapshot)
        return self._cache[key]

    def _accept(self, key: Key, snapshot: WatermarkSnapshot) -> None:
        """Fold a durable snapshot into the cache and mark the key synced."""
        fallback = self._cache.get(key, EPOCH_ISO)
        if snapshot.exists:
            value = normalize_watermark(snapshot.last_read_at, fallback=fallback)
        else:
            value = fallback

        if self.guard_monotonic and key in self._cache:
            value = later_watermark(self._cache[key], value)

        self._sync[key] = SyncState.SYNCED
        self._set(key, value)

    def _set(self, key: Key, value: str) -> None:
        changed = self._cache.get(key) != value
        self._cache[key] = value
        if changed:
            for listener in list(self._listeners.get(key, ())):
                try:
                    listener(value)
                except Exception:
                    logger.exception("last_read_listener_failed", conversation_id=key[1])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def mark_read(self, user_id: str, conversation_id: str) -> str:
        """Mark read now: cache at once, durable write after the debounce window.

        Must be called from a running event loop.

        Returns:
            The watermark now in the cache.
        """
        if not user_id or not conversation_id:
            return EPOCH_ISO

        key = (user_id, conversation_id)
        now = format_iso(self.clock.now())
        value = now
        if self.guard_monotonic and key in self._cache:
            value = later_watermark(self._cache[key], now)

        self._sync[key] = SyncState.SYNCED
        self._set(key, value)

        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        self._writes[key] = WriteState.PENDING_WRITE
        self._timers[key] = asyncio.create_task(self._debounced_write(key))
        return value

    async def _debounced_write(self, key: Key) -> None:
        await self._sleep(self.debounce_s)
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        await self._write(key)

    async def _write(self, key: Key) -> None:
        user_id, conversation_id = key
        try:
            await self.store.write(user_id, conversation_id)
        except Exception as e:
            logger.warning(
                "last_read_write_failed",
                conversation_id=conversation_id,
                error=str(e),
            )
        finally:
            # A mark_read during the write has scheduled another one
            if key not in self._timers:
                self._writes[key] = WriteState.FLUSHED

    async def flush_pending(self) -> None:
        """Write every debounced watermark now (shutdown, sign-out)."""
        pending = list(self._timers.items())
        self._timers.clear()
        for _, task in pending:
            task.cancel()
        await asyncio.gather(*(self._write(key) for key, _ in pending))

    # -------------------------------------------------------------------------
    # Live updates
    # -------------------------------------------------------------------------

    def watch(
        self, user_id: str, conversation_id: str, listener: WatermarkListener
    ) -> Unsubscribe:
        """Call ``listener`` with the watermark whenever it changes, on any device.

        All watchers of one conversation share a single store subscription.
        """
        key = (user_id, conversation_id)
        self._listeners.setdefault(key, []).append(listener)

        release_source = self.registry.subscribe(
            f"lastRead:{user_id}_{conversation_id}",
            lambda emit: self.store.subscribe(user_id, conversation_id, emit),
            lambda snapshot: self._accept(key, snapshot),
        )

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            release_source()

        return unsubscribe

    # -------------------------------------------------------------------------
    # Unread counts
    # -------------------------------------------------------------------------

    def unread_count(
        self,
        messages: Iterable[RoutableMessage],
        user_id: str,
        conversation_id: str,
    ) -> int:
        """Unread count against the cached watermark; zero until hydrated."""
        key = (user_id, conversation_id)
        if self._sync.get(key) != SyncState.SYNCED:
            return 0
        return derive_unread(messages, user_id, conversation_id, self._cache.get(key))

    def track_unread(
        self,
        user_id: str,
        conversation_id: str,
        on_count: Callable[[int], None],
    ) -> "UnreadTracker":
        return UnreadTracker(self, user_id, conversation_id, on_count)


class UnreadTracker:
    """Recomputes one conversation's unread count when messages or the watermark change.

    ``on_count`` fires only when the count actually changes.
    """

    def __init__(
        self,
        synchronizer: ReadStateSynchronizer,
        user_id: str,
        conversation_id: str,
        on_count: Callable[[int], None],
    ):
        self.synchronizer = synchronizer
        self.user_id = user_id
        self.conversation_id = conversation_id
        self.on_count = on_count
        self.count = 0
        self._messages: list[RoutableMessage] = []
        self._unwatch = synchronizer.watch(user_id, conversation_id, self._on_watermark)

    def on_messages(self, messages: Iterable[RoutableMessage]) -> None:
        self._messages = list(messages)
        self._recompute()

    def _on_watermark(self, _value: str) -> None:
        self._recompute()

    def _recompute(self) -> None:
        count = self.synchronizer.unread_count(
            self._messages, self.user_id, self.conversation_id
        )
        if count != self.count:
            self.count = count
            self.on_count(count)

    def close(self) -> None:
        self._unwatch()

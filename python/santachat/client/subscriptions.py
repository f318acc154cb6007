"""Reference-counted registry of live subscriptions.

Many consumers can watch the same source (say, one watermark record)
through a single underlying subscription. The first listener for a key opens
the source; the last one to leave closes it. A listener that joins late is
replayed the most recent event so it does not wait for the next change.

The registry is an ordinary object handed to whoever needs it, not a module
global, so tests and separate sessions each get their own.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from santachat.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]
# Given an emit function, open the source and return its close function
SourceOpener = Callable[[Listener], Unsubscribe]

_NO_EVENT = object()


@dataclass
class _Entry:
    key: str
    listeners: dict[int, Listener] = field(default_factory=dict)
    close_source: Unsubscribe | None = None
    last_event: Any = _NO_EVENT


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._next_token = 0
        self.total_opened = 0

    def subscribe(self, key: str, open_source: SourceOpener, listener: Listener) -> Unsubscribe:
        """Attach ``listener`` to the shared subscription named ``key``.

        Returns:
            A release function; calling it more than once is harmless.
        """
        token = self._next_token
        self._next_token += 1

        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(key=key)
            self._entries[key] = entry
            entry.listeners[token] = listener
            self.total_opened += 1
            logger.info("subscription_opened", key=key, total_opened=self.total_opened)
            try:
                entry.close_source = open_source(lambda event: self._emit(key, event))
            except Exception:
                del self._entries[key]
                raise
        else:
            entry.listeners[token] = listener
            logger.debug("subscription_shared", key=key, listeners=len(entry.listeners))
            if entry.last_event is not _NO_EVENT:
                self._deliver(key, listener, entry.last_event)

        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._release(key, token)

        return release

    def _emit(self, key: str, event: Any) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.last_event = event
        for listener in list(entry.listeners.values()):
            self._deliver(key, listener, event)

    def _deliver(self, key: str, listener: Listener, event: Any) -> None:
        try:
            listener(event)
        except Exception:
            logger.exception("subscription_listener_failed", key=key)

    def _release(self, key: str, token: int) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.listeners.pop(token, None)
        if entry.listeners:
            return

        del self._entries[key]
        if entry.close_source is not None:
            try:
                entry.close_source()
            except Exception:
                logger.exception("subscription_close_failed", key=key)
        logger.info("subscription_closed", key=key, remaining=len(self._entries))

    def active_subscriptions(self) -> dict[str, int]:
        """Open subscriptions and how many listeners share each one."""
        return {key: len(entry.listeners) for key, entry in self._entries.items()}

    def close_all(self) -> None:
        for key in list(self._entries):
            entry = self._entries.pop(key)
            if entry.close_source is not None:
                try:
                    entry.close_source()
                except Exception:
                    logger.exception("subscription_close_failed", key=key)

"""Network boundary for the outbox drainer.

- MessageSender: posts one outbox item to the send endpoint
- CredentialProvider: supplies bearer tokens, optionally forcing a refresh
- ConnectivityMonitor: tracks whether the device believes it is online

HttpMessageSender reports every HTTP response as a SendAttempt instead of
raising, so the drainer classifies statuses in one place. Transport
failures (connection refused, timeouts) still raise httpx exceptions.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from santachat.client.outbox import OutboxItem
from santachat.config import ClientSettings, get_client_settings
from santachat.logging import get_logger

logger = get_logger(__name__)

SEND_PATH = "/messages/send"


@dataclass(frozen=True)
class SendAttempt:
    status_code: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def replayed(self) -> bool:
        return isinstance(self.body, dict) and bool(self.body.get("replayed"))

    @property
    def error_code(self) -> str | None:
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict):
                return error.get("code")
        return None

    @property
    def error_message(self) -> str:
        """The server's error text, or a status-based fallback."""
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
        return f"Request failed with status {self.status_code}"


class MessageSender(Protocol):
    async def send(self, item: OutboxItem, token: str) -> SendAttempt: ...


class CredentialProvider(Protocol):
    async def get_token(self, force_refresh: bool = False) -> str | None: ...


class HttpMessageSender:
    """Delivers outbox items over a shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, path: str = SEND_PATH):
        self.client = client
        self.path = path

    async def send(self, item: OutboxItem, token: str) -> SendAttempt:
        response = await self.client.post(
            self.path,
            json=item.delivery_payload(),
            headers={
                "Authorization": f"Bearer {token}",
                "X-Client-Message-ID": item.client_message_id,
            },
        )
        try:
            body = response.json()
        except ValueError:
            body = None
        return SendAttempt(status_code=response.status_code, body=body)


class ConnectivityMonitor:
    """Online/offline flag with change notifications.

    Starts online. Whatever watches the real network calls set_online().
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("connectivity_changed", online=online)
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("connectivity_listener_failed")

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


def create_http_client(settings: ClientSettings | None = None) -> httpx.AsyncClient:
    """Shared AsyncClient for the send endpoint and the read-state API."""
    settings = settings or get_client_settings()
    return httpx.AsyncClient(
        base_url=settings.api_url,
        timeout=httpx.Timeout(settings.request_timeout_s, connect=5.0),
    )

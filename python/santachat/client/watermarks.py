"""Watermark store backed by the santachat read-state API.

- fetch: GET /read-state/{conversation_id}
- write: PUT /read-state/{conversation_id} (the server stamps its own clock)
- subscribe: polls fetch and reports snapshots whose value changed

The API only serves the caller's own watermarks, so ``user_id`` must be the
user the credentials belong to.
"""

import asyncio
from collections.abc import Callable
from urllib.parse import quote

import httpx

from santachat.client.read_state import WatermarkSnapshot
from santachat.client.subscriptions import Unsubscribe
from santachat.client.transport import CredentialProvider
from santachat.errors import ErrorKind, normalize_error
from santachat.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_S = 15.0


class HttpWatermarkStore:
    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialProvider,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ):
        self.client = client
        self.credentials = credentials
        self.poll_interval_s = poll_interval_s

    def _path(self, conversation_id: str) -> str:
        return f"/read-state/{quote(conversation_id, safe='')}"

    async def _request(self, method: str, conversation_id: str) -> httpx.Response:
        """Send with the current token, refreshing it once on 401."""
        token = await self.credentials.get_token(False)
        response = await self.client.request(
            method, self._path(conversation_id), headers={"Authorization": f"Bearer {token}"}
        )
        if response.status_code == 401:
            token = await self.credentials.get_token(True)
            response = await self.client.request(
                method,
                self._path(conversation_id),
                headers={"Authorization": f"Bearer {token}"},
            )
        response.raise_for_status()
        return response

    async def fetch(self, user_id: str, conversation_id: str) -> WatermarkSnapshot:
        response = await self._request("GET", conversation_id)
        data = response.json().get("data") or {}
        return WatermarkSnapshot(exists=True, last_read_at=data.get("lastReadAt"))

    async def write(self, user_id: str, conversation_id: str) -> None:
        await self._request("PUT", conversation_id)

    def subscribe(
        self,
        user_id: str,
        conversation_id: str,
        callback: Callable[[WatermarkSnapshot], None],
    ) -> Unsubscribe:
        task = asyncio.create_task(self._poll(user_id, conversation_id, callback))

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(
        self,
        user_id: str,
        conversation_id: str,
        callback: Callable[[WatermarkSnapshot], None],
    ) -> None:
        last_value: object = None
        first = True
        while True:
            try:
                snapshot = await self.fetch(user_id, conversation_id)
            except Exception as e:
                # Credential providers raise their own errors; only permanent kinds stop polling
                kind = normalize_error(e)
                logger.warning(
                    "last_read_poll_failed",
                    conversation_id=conversation_id,
                    error_kind=kind.value,
                    error=str(e),
                )
                if kind in (ErrorKind.FORBIDDEN, ErrorKind.INVALID, ErrorKind.NOT_FOUND):
                    logger.info("last_read_poll_stopped", conversation_id=conversation_id)
                    return
            else:
                if first or snapshot.last_read_at != last_value:
                    first = False
                    last_value = snapshot.last_read_at
                    callback(snapshot)
            await asyncio.sleep(self.poll_interval_s)

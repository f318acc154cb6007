"""Client-resident delivery and read-state components.

Typical wiring for one signed-in user:

    settings = get_client_settings()
    http = create_http_client(settings)
    store = OutboxStore(JsonFileStorage(settings.outbox_path), settings)
    drainer = DeliveryDrainer(store, HttpMessageSender(http), credentials)
    runtime = OutboxRuntime(drainer, user_id)
    runtime.start()

    read_state = ReadStateSynchronizer(
        HttpWatermarkStore(http, credentials), debounce_s=settings.last_read_debounce_s
    )
"""

from santachat.client.drainer import DeliveryDrainer, DrainResult
from santachat.client.outbox import OUTBOX_STORAGE_KEY, OutboxItem, OutboxStatus, OutboxStore
from santachat.client.read_state import (
    ReadStateSynchronizer,
    SyncState,
    UnreadTracker,
    WatermarkSnapshot,
    WriteState,
)
from santachat.client.runtime import OutboxRuntime
from santachat.client.storage import JsonFileStorage, LocalStorage, MemoryStorage
from santachat.client.subscriptions import SubscriptionRegistry
from santachat.client.transport import (
    ConnectivityMonitor,
    HttpMessageSender,
    SendAttempt,
    create_http_client,
)
from santachat.client.watermarks import HttpWatermarkStore

__all__ = [
    "OUTBOX_STORAGE_KEY",
    "ConnectivityMonitor",
    "DeliveryDrainer",
    "DrainResult",
    "HttpMessageSender",
    "HttpWatermarkStore",
    "JsonFileStorage",
    "LocalStorage",
    "MemoryStorage",
    "OutboxItem",
    "OutboxRuntime",
    "OutboxStatus",
    "OutboxStore",
    "ReadStateSynchronizer",
    "SendAttempt",
    "SubscriptionRegistry",
    "SyncState",
    "UnreadTracker",
    "WatermarkSnapshot",
    "WriteState",
    "create_http_client",
]

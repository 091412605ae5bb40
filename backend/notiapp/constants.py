from enum import StrEnum


class Collection(StrEnum):
    """Logical collections of the durable local store."""

    NOTES = "notes"
    NOTIFICATIONS = "notifications"
    SUBSCRIPTION = "subscription"
    SETTINGS = "settings"


class NoteSyncState(StrEnum):
    CREATED = "created"
    SYNC_ATTEMPTED = "sync_attempted"
    SYNCED = "synced"
    UNSYNCED = "unsynced"


class RemoteSyncStatus(StrEnum):
    """Per-item outcome reported by ``POST /api/data/sync``."""

    SYNCED = "synced"
    ALREADY_EXISTS = "already_exists"


class NoteSource(StrEnum):
    ONLINE = "online"
    OFFLINE_SYNC = "offline_sync"


class WorkerState(StrEnum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class MessageType(StrEnum):
    # worker -> page
    NOTIFICATION_RECEIVED = "NOTIFICATION_RECEIVED"
    NOTIFICATION_CLICKED = "NOTIFICATION_CLICKED"
    SYNC_COMPLETE = "SYNC_COMPLETE"
    # page -> worker
    SKIP_WAITING = "SKIP_WAITING"
    CACHE_URLS = "CACHE_URLS"
    CLEAR_CACHE = "CLEAR_CACHE"


class PermissionState(StrEnum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class NoticeLevel(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Tag used by the background sync registration of the page.
SYNC_TAG = "sync-data"

# Singleton key of the local subscription record.
CURRENT_SUBSCRIPTION_ID = "current"

# Display defaults merged into every incoming push payload.
DEFAULT_NOTIFICATION: dict = {
    "title": "NotiApp",
    "body": "Tienes una nueva notificación",
    "icon": "/icons/icon-192.png",
    "badge": "/icons/icon-72.png",
    "tag": "notiapp-notification",
    "data": {},
}

DEFAULT_NOTIFICATION_ACTIONS: list[dict] = [
    {"action": "open", "title": "Abrir"},
    {"action": "close", "title": "Cerrar"},
]

CLOSE_ACTION = "close"

"""Network mediator: the service-worker execution context.

Nothing in this package touches the page's local store; the page and the
worker exchange :class:`~notiapp.worker.messages.WorkerMessage` objects only.
"""

from notiapp.worker.cache_storage import Cache, CacheError, CacheStorage
from notiapp.worker.clients import Clients, WindowClient
from notiapp.worker.messages import WorkerMessage
from notiapp.worker.notifications import DisplayedNotification, NotificationTray
from notiapp.worker.registration import ServiceWorkerRegistration
from notiapp.worker.service_worker import InstallError, ServiceWorker
from notiapp.worker.transport import MediatorTransport

__all__ = [
    "Cache",
    "CacheError",
    "CacheStorage",
    "Clients",
    "DisplayedNotification",
    "InstallError",
    "MediatorTransport",
    "NotificationTray",
    "ServiceWorker",
    "ServiceWorkerRegistration",
    "WindowClient",
    "WorkerMessage",
]

# @TASK P2-T2.2 - Service worker: lifecycle, fetch routing, push and messages
# @TEST tests/test_service_worker.py

"""The worker context of the app.

The worker owns the cache generations and the notification tray.  It
talks to pages only through :class:`~notiapp.worker.messages.WorkerMessage`
objects posted to their inbox; it never touches the page's local store.

Lifecycle::

    PARSED -> INSTALLING -> INSTALLED -> ACTIVATING -> ACTIVATED -> REDUNDANT

Install pre-caches ``STATIC_ASSETS`` into the static generation (all or
nothing).  Activate drops every cache that is neither the current static
nor the current dynamic generation, then claims the open pages.

Fetch handling (same-origin GET only):

- ``/api/`` paths: network-first, write-through to the dynamic cache,
  cached copy or a JSON ``503`` when the network is down.
- everything else: cache-first with a background refresh of the hit,
  network on miss, app shell or ``503 Offline`` when both fail.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import httpx

from notiapp.config import get_settings
from notiapp.constants import (
    CLOSE_ACTION,
    DEFAULT_NOTIFICATION,
    DEFAULT_NOTIFICATION_ACTIONS,
    SYNC_TAG,
    MessageType,
    WorkerState,
)
from notiapp.utils.datetime_utils import now_ms
from notiapp.worker.cache_storage import CacheError, CacheStorage, snapshot
from notiapp.worker.clients import Clients, WindowClient
from notiapp.worker.messages import WorkerMessage
from notiapp.worker.notifications import DisplayedNotification, NotificationTray
from notiapp.worker.routing import (
    Strategy,
    choose_strategy,
    is_same_origin,
    offline_api_response,
    offline_page_response,
)

if TYPE_CHECKING:
    from notiapp.worker.registration import ServiceWorkerRegistration

logger = logging.getLogger(__name__)

PUSH_VIBRATE_PATTERN = [100, 50, 100]


class InstallError(Exception):
    """Raised when pre-caching the static assets fails.  The worker is redundant."""


class ServiceWorker:
    """Network mediator running in the worker context.

    Args:
        caches: Cache storage of the origin.
        network: Transport used for real network access.
        clients: Pages in scope.
        notifications: The system notification tray.
        static_assets: Paths pre-cached on install; defaults to ``STATIC_ASSETS``.
        skip_waiting_on_install: Activate as soon as installed, even if an
            older worker still controls pages; defaults to ``SW_SKIP_WAITING``.
    """

    def __init__(
        self,
        *,
        caches: CacheStorage,
        network: httpx.AsyncBaseTransport,
        clients: Clients,
        notifications: NotificationTray,
        origin: str | None = None,
        static_cache_name: str | None = None,
        dynamic_cache_name: str | None = None,
        static_assets: list[str] | None = None,
        api_prefix: str | None = None,
        app_shell_path: str | None = None,
        skip_waiting_on_install: bool | None = None,
    ) -> None:
        settings = get_settings()
        self.caches = caches
        self.clients = clients
        self.notifications = notifications
        self.origin = (origin or settings.APP_ORIGIN).rstrip("/")
        self.static_cache_name = static_cache_name or settings.STATIC_CACHE_NAME
        self.dynamic_cache_name = dynamic_cache_name or settings.DYNAMIC_CACHE_NAME
        self.static_assets = list(settings.STATIC_ASSETS if static_assets is None else static_assets)
        self.api_prefix = api_prefix or settings.API_PREFIX
        self.app_shell_path = app_shell_path or settings.APP_SHELL_PATH
        self._skip_waiting_on_install = (
            settings.SW_SKIP_WAITING if skip_waiting_on_install is None else skip_waiting_on_install
        )
        self._network = network

        self.state = WorkerState.PARSED
        self.registration: ServiceWorkerRegistration | None = None
        self.skip_waiting_requested = False
        self._tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"ServiceWorker(state={self.state})"

    # ------------------------------------------------------------------
    # Tracked work
    # ------------------------------------------------------------------

    def keep_alive(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run *coro* in the background and keep the worker busy until it ends."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[Service Worker] Background task failed: %s", task.exception())

    async def wait_idle(self) -> None:
        """Wait for every tracked task, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def install(self) -> None:
        """Pre-cache the static assets into the static generation.

        Raises:
            InstallError: Any asset could not be fetched or stored.
        """
        self.state = WorkerState.INSTALLING
        logger.info("[Service Worker] Installing...")
        try:
            cache = await self.caches.open(self.static_cache_name)
            await cache.add_all([self.resolve(path) for path in self.static_assets], self.fetch_url)
        except (httpx.HTTPError, CacheError) as exc:
            self.state = WorkerState.REDUNDANT
            logger.error("[Service Worker] Error caching static assets: %s", exc)
            raise InstallError(f"Install failed: {exc}") from exc

        self.state = WorkerState.INSTALLED
        logger.info("[Service Worker] Static assets cached")
        if self._skip_waiting_on_install:
            await self.skip_waiting()

    async def activate(self) -> None:
        self.state = WorkerState.ACTIVATING
        logger.info("[Service Worker] Activating...")
        current = {self.static_cache_name, self.dynamic_cache_name}
        for name in await self.caches.keys():
            if name not in current:
                logger.info("[Service Worker] Deleting old cache: %s", name)
                await self.caches.delete(name)
        await self.clients.claim(self)
        self.state = WorkerState.ACTIVATED
        logger.info("[Service Worker] Activated")

    async def skip_waiting(self) -> None:
        """Activate without waiting for pages of the previous worker to close."""
        self.skip_waiting_requested = True
        if self.registration is not None and self.registration.waiting is self:
            await self.registration.activate_waiting()

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> str:
        return urljoin(self.origin + "/", path)

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        """Send *request* to the network and return a fully-read copy."""
        response = await self._network.handle_async_request(request)
        try:
            await response.aread()
        finally:
            await response.aclose()
        return snapshot(response)

    async def fetch_url(self, url: str) -> httpx.Response:
        return await self.fetch(httpx.Request("GET", url))

    async def handle_fetch(self, request: httpx.Request) -> httpx.Response | None:
        """Answer *request*, or return ``None`` when it is not intercepted."""
        strategy = choose_strategy(request, self.origin, self.api_prefix)
        if strategy is None:
            return None
        if strategy is Strategy.NETWORK_FIRST:
            return await self._network_first(request)
        return await self._cache_first(request)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        try:
            response = await self.fetch(request)
        except httpx.TransportError as exc:
            logger.info("[Service Worker] Network failed for %s, trying cache: %s", url, exc)
            cached = await self.caches.match(url)
            return cached if cached is not None else offline_api_response()

        if response.is_success:
            await self._store(self.dynamic_cache_name, url, response)
        return response

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        hit = await self.caches.match_with_name(url)
        if hit is not None:
            cache_name, cached = hit
            self.keep_alive(self._revalidate(request, cache_name))
            return cached

        try:
            response = await self.fetch(request)
        except httpx.TransportError as exc:
            logger.info("[Service Worker] Offline, no cache for %s: %s", url, exc)
            shell = await self.caches.match(self.resolve(self.app_shell_path))
            return shell if shell is not None else offline_page_response()

        if response.is_success:
            await self._store(self.dynamic_cache_name, url, response)
        return response

    async def _revalidate(self, request: httpx.Request, cache_name: str) -> None:
        url = str(request.url)
        try:
            response = await self.fetch(request)
        except httpx.TransportError:
            logger.debug("[Service Worker] Background refresh skipped for %s", url)
            return
        if response.is_success:
            await self._store(cache_name, url, response)

    async def _store(self, cache_name: str, url: str, response: httpx.Response) -> None:
        try:
            cache = await self.caches.open(cache_name)
            await cache.put(url, response)
        except CacheError as exc:
            logger.warning("[Service Worker] Could not cache %s: %s", url, exc.message)

    # ------------------------------------------------------------------
    # Push and notifications
    # ------------------------------------------------------------------

    async def show_notification(self, title: str, **options: Any) -> DisplayedNotification:
        return await self.notifications.show(title, **options)

    async def show_local_notification(
        self, title: str, body: str, data: dict[str, Any] | None = None
    ) -> DisplayedNotification:
        """Display a notification that did not come through the push service."""
        timestamp = now_ms()
        return await self.show_notification(
            title,
            body=body,
            icon=DEFAULT_NOTIFICATION["icon"],
            badge=DEFAULT_NOTIFICATION["badge"],
            tag=f"local-notification-{timestamp}",
            data={**(data or {}), "url": "/", "timestamp": timestamp},
            vibrate=list(PUSH_VIBRATE_PATTERN),
        )

    async def handle_push(self, payload: bytes | str | None) -> DisplayedNotification | None:
        """Render a push message and tell every page about it.

        A JSON object payload is merged over the default display fields;
        any other payload becomes the notification body.
        """
        logger.info("[Service Worker] Push received")
        content: dict[str, Any] = {**DEFAULT_NOTIFICATION, "data": {}}
        if payload:
            text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                content.update(parsed)
            else:
                content["body"] = text

        data = content.get("data") if isinstance(content.get("data"), dict) else {}
        try:
            notification = await self.show_notification(
                content.get("title"),
                body=content.get("body") or "",
                icon=content.get("icon"),
                badge=content.get("badge"),
                tag=content.get("tag"),
                data=data,
                actions=content.get("actions") or [dict(a) for a in DEFAULT_NOTIFICATION_ACTIONS],
                vibrate=list(PUSH_VIBRATE_PATTERN),
                renotify=True,
            )
        except Exception:
            logger.exception("[Service Worker] Failed to display push notification")
            return None

        await self.broadcast(
            WorkerMessage(
                MessageType.NOTIFICATION_RECEIVED,
                {
                    "title": notification.title,
                    "body": notification.body,
                    "timestamp": now_ms(),
                    "data": notification.data,
                },
            )
        )
        return notification

    async def handle_notification_click(
        self, notification: DisplayedNotification, action: str | None = None
    ) -> WindowClient | None:
        """Close *notification* and bring a page to the front."""
        logger.info("[Service Worker] Notification clicked (action=%s)", action)
        self.notifications.close(notification)
        if action == CLOSE_ACTION:
            return None

        data = notification.data or {}
        for client in await self.clients.match_all(include_uncontrolled=True):
            if is_same_origin(client.url, self.origin):
                client.post_message(WorkerMessage(MessageType.NOTIFICATION_CLICKED, dict(data)))
                return await client.focus()
        return await self.clients.open_window(self.resolve(data.get("url") or "/"))

    async def handle_notification_close(self, notification: DisplayedNotification) -> None:
        """The user dismissed *notification* without clicking it."""
        self.notifications.close(notification)
        logger.info("[Service Worker] Notification closed: %s", notification.tag)

    async def handle_sync(self, tag: str) -> None:
        logger.info("[Service Worker] Background sync: %s", tag)
        if tag == SYNC_TAG:
            await self.broadcast(WorkerMessage(MessageType.SYNC_COMPLETE, {"timestamp": now_ms()}))

    async def broadcast(self, message: WorkerMessage) -> None:
        for client in await self.clients.match_all():
            client.post_message(message)

    # ------------------------------------------------------------------
    # Messages from pages
    # ------------------------------------------------------------------

    def post_message(self, message: WorkerMessage) -> asyncio.Task:
        """Queue *message* for handling; the caller does not wait for it."""
        return self.keep_alive(self.handle_message(message))

    async def handle_message(self, message: WorkerMessage) -> None:
        logger.info("[Service Worker] Message received: %s", message.type)
        if message.type == MessageType.SKIP_WAITING:
            await self.skip_waiting()
        elif message.type == MessageType.CACHE_URLS:
            urls = [self.resolve(u) for u in message.payload.get("urls", [])]
            cache = await self.caches.open(self.dynamic_cache_name)
            await cache.add_all(urls, self.fetch_url)
        elif message.type == MessageType.CLEAR_CACHE:
            for name in await self.caches.keys():
                await self.caches.delete(name)
            logger.info("[Service Worker] All caches cleared")
        else:
            logger.warning("[Service Worker] Unknown message type: %s", message.type)

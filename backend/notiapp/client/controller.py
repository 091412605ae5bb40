# @TASK P4-T4.1 - Application controller (page context orchestration)
# @TEST tests/test_controller.py

"""Page-side orchestration of store, sync, worker and push.

:class:`NotiApp` wires one page to its worker context.  The page's HTTP
client uses :class:`~notiapp.worker.transport.MediatorTransport`, so
every remote call is transparently mediated once the worker is active.

User-visible outcomes are appended to :attr:`AppState.notices` instead of
raised: transient failures keep the app usable offline, a store that
cannot be opened puts the app in a disabled state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from notiapp.client.api_client import ApiError, NotiApiClient, SubscriptionExpiredError
from notiapp.client.connectivity import Connectivity
from notiapp.client.local_models import LocalNote, NotificationRecord
from notiapp.client.local_store import LocalStore, StoreNotOpenError, StoreOpenError, StoreOperationError
from notiapp.client.push_platform import LocalPushPlatform, PushPlatform
from notiapp.client.push_session import PushSessionManager, PushStatus, PushSubscriptionError
from notiapp.client.sync_engine import SyncEngine, SyncError, SyncResult
from notiapp.config import get_settings
from notiapp.constants import MessageType, NoticeLevel
from notiapp.schemas import UserData
from notiapp.utils.datetime_utils import datetime_to_iso, now_ms
from notiapp.worker.cache_storage import CacheError, CacheStorage
from notiapp.worker.clients import Clients, WindowClient
from notiapp.worker.messages import WorkerMessage
from notiapp.worker.notifications import NotificationTray
from notiapp.worker.registration import ServiceWorkerRegistration
from notiapp.worker.service_worker import InstallError, ServiceWorker
from notiapp.worker.transport import MediatorTransport

logger = logging.getLogger(__name__)

_STORE_ERRORS = (StoreOperationError, StoreNotOpenError)

DEFAULT_TEST_TITLE = "¡Hola desde NotiApp!"
DEFAULT_TEST_BODY = "Esta es una notificación de prueba."


@dataclass
class Notice:
    level: NoticeLevel
    message: str
    created_at: int = field(default_factory=now_ms)


@dataclass
class AppState:
    online: bool = True
    disabled: bool = False
    worker_active: bool = False
    update_available: bool = False
    notes: list[LocalNote] = field(default_factory=list)
    notifications: list[NotificationRecord] = field(default_factory=list)
    push: PushStatus | None = None
    notices: list[Notice] = field(default_factory=list)


class NotiApp:
    """One page of the app together with its worker context.

    Args:
        network: Transport for real network access; defaults to
            :class:`httpx.AsyncHTTPTransport`.
        store: Local store; defaults to one at ``LOCAL_DATABASE_URL``.
        caches: Worker cache storage; defaults to ``CACHE_DATABASE_URL``.
        push_platform: Platform push manager; defaults to
            :class:`LocalPushPlatform`.
        origin: Origin of the app; defaults to ``APP_ORIGIN``.
        online: Initial connectivity.
        static_assets: Passed to the worker; defaults to ``STATIC_ASSETS``.
    """

    def __init__(
        self,
        *,
        network: httpx.AsyncBaseTransport | None = None,
        store: LocalStore | None = None,
        caches: CacheStorage | None = None,
        push_platform: PushPlatform | None = None,
        origin: str | None = None,
        online: bool = True,
        static_assets: list[str] | None = None,
    ) -> None:
        self.origin = (origin or get_settings().APP_ORIGIN).rstrip("/")
        self.network = network or httpx.AsyncHTTPTransport()
        self.store = store or LocalStore()
        self.caches = caches or CacheStorage()
        self.clients = Clients()
        self.page = self.clients.attach(WindowClient(self.origin + "/"))
        self.notification_tray = NotificationTray()
        self.registration = ServiceWorkerRegistration(
            scope=self.origin + "/",
            clients=self.clients,
            push_manager=push_platform or LocalPushPlatform(),
        )
        self.connectivity = Connectivity(online)
        self.api = NotiApiClient(self.origin, transport=MediatorTransport(self.page, self.network))
        self.sync = SyncEngine(self.store, self.api, self.connectivity)
        self.push = PushSessionManager(self.store, self.api)
        self.state = AppState(online=online)
        self._static_assets = static_assets

        self.connectivity.add_listener(on_online=self.handle_online, on_offline=self.handle_offline)

    def notify(self, level: NoticeLevel, message: str) -> Notice:
        notice = Notice(level, message)
        self.state.notices.append(notice)
        logger.info("[App] %s: %s", level, message)
        return notice

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def init(self) -> None:
        logger.info("[App] Initializing NotiApp...")
        try:
            await self.store.open()
        except StoreOpenError as exc:
            logger.error("[App] Local store unavailable: %s", exc)
            self.state.disabled = True
            self.notify(NoticeLevel.ERROR, "Almacenamiento local no disponible")

        await self.register_worker()
        await self.init_push()
        await self.load_data()
        logger.info("[App] NotiApp initialized")

    async def register_worker(self) -> ServiceWorker | None:
        worker = ServiceWorker(
            caches=self.caches,
            network=self.network,
            clients=self.clients,
            notifications=self.notification_tray,
            origin=self.origin,
            static_assets=self._static_assets,
        )
        try:
            await self.caches.connect()
            await self.registration.register(worker)
        except (InstallError, CacheError) as exc:
            logger.error("[App] Service Worker registration failed: %s", exc)
            self.notify(NoticeLevel.ERROR, "Error al registrar Service Worker")
            return None

        if self.registration.waiting is worker:
            self.state.update_available = True
            self.notify(NoticeLevel.INFO, "Nueva versión disponible. Recarga para actualizar.")
        self.state.worker_active = self.registration.active is not None
        return worker

    async def init_push(self) -> None:
        if await self.push.init(self.registration):
            logger.info("[App] User is already subscribed")
        await self.refresh_push_status()

    async def refresh_push_status(self) -> PushStatus:
        self.state.push = await self.push.get_status()
        return self.state.push

    async def close(self) -> None:
        worker = self.registration.active
        if worker is not None:
            await worker.wait_idle()
        await self.api.close()
        await self.caches.close()
        await self.store.close()

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    async def load_data(self) -> None:
        await asyncio.gather(self.load_notes(), self.load_notifications())

    async def load_notes(self) -> None:
        if self.state.disabled:
            return
        try:
            self.state.notes = await self.store.get_all_notes()
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to load notes: %s", exc)

    async def load_notifications(self) -> None:
        if self.state.disabled:
            return
        try:
            self.state.notifications = await self.store.get_all_notifications()
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to load notifications: %s", exc)

    async def add_note(self, text: str) -> LocalNote | None:
        text = text.strip()
        if not text:
            self.notify(NoticeLevel.WARNING, "Escribe algo para guardar")
            return None

        try:
            note = await self.sync.save_note(text)
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to add note: %s", exc)
            self.notify(NoticeLevel.ERROR, "Error al guardar nota")
            return None

        await self.load_notes()
        if note.synced:
            self.notify(NoticeLevel.SUCCESS, "Nota guardada y sincronizada")
        else:
            self.notify(NoticeLevel.INFO, "Guardado offline - Se sincronizará cuando haya internet")
        return note

    async def delete_note(self, note_id: int) -> bool:
        try:
            deleted = await self.store.delete_note(note_id)
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to delete note: %s", exc)
            self.notify(NoticeLevel.ERROR, "Error al eliminar nota")
            return False
        await self.load_notes()
        self.notify(NoticeLevel.SUCCESS, "Nota eliminada")
        return deleted

    async def clear_history(self) -> None:
        try:
            await self.store.clear_notifications()
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to clear history: %s", exc)
            self.notify(NoticeLevel.ERROR, "Error al limpiar historial")
            return
        await self.load_notifications()
        self.notify(NoticeLevel.SUCCESS, "Historial limpiado")

    async def acknowledge_notification(self, notification_id: int) -> bool:
        try:
            record = await self.store.mark_notification_read(notification_id)
        except _STORE_ERRORS as exc:
            logger.error("[App] Failed to acknowledge notification: %s", exc)
            return False
        await self.load_notifications()
        return record is not None

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def subscribe(self, user_name: str | None = None, preferences: list[str] | None = None) -> bool:
        user = UserData(user_name=(user_name or "").strip() or None, preferences=list(preferences or []))
        try:
            await self.push.subscribe(user)
        except PushSubscriptionError as exc:
            logger.error("[App] Subscribe failed: %s", exc.message)
            self.notify(NoticeLevel.ERROR, f"Error al activar notificaciones: {exc.message}")
            return False
        finally:
            await self.refresh_push_status()
        self.notify(NoticeLevel.SUCCESS, "¡Notificaciones activadas!")
        return True

    async def unsubscribe(self) -> bool:
        try:
            await self.push.unsubscribe()
        except PushSubscriptionError as exc:
            logger.error("[App] Unsubscribe failed: %s", exc.message)
            self.notify(NoticeLevel.ERROR, "Error al desactivar notificaciones")
            return False
        finally:
            await self.refresh_push_status()
        self.notify(NoticeLevel.INFO, "Notificaciones desactivadas")
        return True

    async def send_test_notification(self, title: str | None = None, body: str | None = None) -> bool:
        title = (title or "").strip() or DEFAULT_TEST_TITLE
        body = (body or "").strip() or DEFAULT_TEST_BODY
        data = {"type": "test", "sentAt": datetime_to_iso(datetime.now(UTC))}
        try:
            await self.push.send_test_notification(title, body, data)
        except SubscriptionExpiredError:
            await self.refresh_push_status()
            self.notify(NoticeLevel.WARNING, "La suscripción ha expirado. Vuelve a suscribirte.")
            return False
        except (PushSubscriptionError, ApiError) as exc:
            logger.error("[App] Test notification failed: %s", exc)
            if self.registration.active is None:
                self.notify(NoticeLevel.ERROR, "Error al enviar notificación")
                return False
            await self.push.show_local_notification(title, body)
            self.notify(NoticeLevel.INFO, "Notificación mostrada localmente")
            await self.load_notifications()
            return False

        self.notify(NoticeLevel.SUCCESS, "Notificación enviada")
        await self.load_notifications()
        return True

    # ------------------------------------------------------------------
    # Connectivity and sync
    # ------------------------------------------------------------------

    async def set_online(self, online: bool) -> None:
        """Report a connectivity change; listeners run on transitions only."""
        await self.connectivity.set_online(online)

    async def handle_online(self) -> None:
        self.state.online = True
        self.notify(NoticeLevel.SUCCESS, "Conexión restaurada")
        await self.sync_data()

    async def handle_offline(self) -> None:
        self.state.online = False
        self.notify(NoticeLevel.WARNING, "Sin conexión - Modo offline activado")

    async def sync_data(self) -> SyncResult | None:
        if not self.connectivity.is_online:
            return None
        try:
            result = await self.sync.sync_pending()
        except SyncError as exc:
            logger.error("[App] Sync failed: %s", exc.message)
            self.notify(NoticeLevel.ERROR, "Error al sincronizar con el servidor")
            return None
        except _STORE_ERRORS as exc:
            logger.error("[App] Sync failed: %s", exc)
            return None

        if result.marked > 0:
            self.notify(NoticeLevel.SUCCESS, f"{result.marked} nota(s) sincronizada(s) con el servidor")
            await self.load_notes()
        return result

    # ------------------------------------------------------------------
    # Worker messages
    # ------------------------------------------------------------------

    def post_to_worker(self, message: WorkerMessage) -> bool:
        worker = self.page.controller
        if worker is None:
            return False
        worker.post_message(message)
        return True

    async def apply_update(self) -> bool:
        """Tell the waiting worker to skip waiting and take over this page."""
        worker = self.registration.waiting
        if worker is None:
            return False
        await worker.post_message(WorkerMessage(MessageType.SKIP_WAITING))
        self.state.update_available = self.registration.waiting is not None
        self.state.worker_active = self.registration.active is not None
        logger.info("[App] Update applied: %s", self.registration.active)
        return self.registration.active is worker

    async def handle_worker_message(self, message: WorkerMessage) -> None:
        payload = message.payload
        if message.type == MessageType.NOTIFICATION_RECEIVED:
            logger.info("[App] Notification received: %s", payload.get("title"))
            try:
                await self.store.add_notification(
                    payload.get("title") or "",
                    payload.get("body") or "",
                    payload.get("data") or {},
                    received_at=payload.get("timestamp"),
                )
            except _STORE_ERRORS as exc:
                logger.error("[App] Failed to record notification: %s", exc)
                return
            await self.load_notifications()
        elif message.type == MessageType.NOTIFICATION_CLICKED:
            logger.info("[App] Notification clicked: %s", payload)
        elif message.type == MessageType.SYNC_COMPLETE:
            logger.info("[App] Sync complete: %s", payload)
            await self.load_data()
        else:
            logger.debug("[App] Ignoring worker message %s", message.type)

    async def pump_messages(self) -> int:
        """Handle every message the worker has posted to this page."""
        messages = self.page.drain()
        for message in messages:
            await self.handle_worker_message(message)
        return len(messages)

# @TASK P3-T3.1 - Push subscription lifecycle (subscribe / unsubscribe / status)
# @TEST tests/test_push_session.py

"""Push subscription lifecycle for the page.

The session bridges the platform push manager with the remote
subscription registry and the local store:

- ``subscribe``: platform subscribe, then remote save (best-effort, the
  subscription must keep working offline), then local save (mandatory).
- ``unsubscribe``: platform unsubscribe, then remote and local removal as
  independent best-effort steps.
- a ``410`` from ``POST /api/push/send`` means the subscription is dead:
  it is removed everywhere and the user has to subscribe again.
"""

from __future__ import annotations

import binascii
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from notiapp import __version__
from notiapp.client.api_client import ApiError, NotiApiClient, SubscriptionExpiredError
from notiapp.client.local_store import LocalStore, StoreNotOpenError, StoreOperationError
from notiapp.client.push_platform import (
    PushPlatform,
    PushPlatformError,
    PushSubscriptionHandle,
    urlsafe_b64decode,
)
from notiapp.config import get_settings
from notiapp.constants import DEFAULT_NOTIFICATION, PermissionState
from notiapp.schemas import NotificationContent, UserData
from notiapp.utils.datetime_utils import datetime_to_iso, now_ms
from notiapp.worker.registration import ServiceWorkerRegistration

logger = logging.getLogger(__name__)

USER_AGENT = f"NotiApp/{__version__} (python-httpx)"


class PushSubscriptionError(Exception):
    """Raised when a push subscription cannot be created.

    Attributes:
        message: A human-readable cause, suitable for the UI.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class PushStatus:
    supported: bool
    subscribed: bool
    permission: PermissionState
    user_name: str | None = None
    preferences: list[str] = field(default_factory=list)


class PushSessionManager:
    """Owns the push subscription of this page.

    Args:
        store: The durable local store.
        api: Client for the push endpoints.
        vapid_public_key: Application server key (URL-safe base64).
            Defaults to ``VAPID_PUBLIC_KEY``; fetched from the remote when
            both are empty.
    """

    def __init__(self, store: LocalStore, api: NotiApiClient, vapid_public_key: str | None = None) -> None:
        self._store = store
        self._api = api
        self._vapid_public_key = vapid_public_key or get_settings().VAPID_PUBLIC_KEY
        self._registration: ServiceWorkerRegistration | None = None
        self._subscription: PushSubscriptionHandle | None = None

    @property
    def is_supported(self) -> bool:
        return self._registration is not None and self._registration.push_manager is not None

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    @property
    def subscription(self) -> PushSubscriptionHandle | None:
        return self._subscription

    def _platform(self) -> PushPlatform:
        if not self.is_supported:
            raise PushSubscriptionError("Push notifications are not supported on this platform")
        return self._registration.push_manager

    async def init(self, registration: ServiceWorkerRegistration | None) -> bool:
        """Attach to *registration*.  Returns whether a subscription already exists."""
        if registration is None or registration.push_manager is None:
            logger.warning("[Push] Push notifications not supported")
            return False

        self._registration = registration
        self._subscription = await registration.push_manager.get_subscription()
        if self._subscription is not None:
            logger.info("[Push] Existing subscription found")
            return True
        return False

    async def request_permission(self) -> PermissionState:
        if not self.is_supported:
            return PermissionState.UNSUPPORTED
        return await self._platform().request_permission()

    # ------------------------------------------------------------------
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------

    async def subscribe(self, user_data: UserData | dict[str, Any] | None = None) -> PushSubscriptionHandle:
        """Subscribe this page to push messages.

        Raises:
            PushSubscriptionError: Push is unsupported, permission was not
                granted, the platform rejected the request, or the local
                store could not record the subscription.
        """
        platform = self._platform()
        permission = await self.request_permission()
        if permission != PermissionState.GRANTED:
            raise PushSubscriptionError("Debes permitir las notificaciones para continuar")

        application_server_key = await self._application_server_key()
        try:
            subscription = await platform.subscribe(application_server_key)
        except PushPlatformError as exc:
            logger.error("[Push] Subscription failed: %s", exc)
            raise PushSubscriptionError(f"Push subscription failed: {exc}") from exc
        self._subscription = subscription

        user = self._user_data(user_data)
        try:
            await self._api.subscribe(subscription.to_info(), user)
            logger.info("[Push] Subscription saved to server")
        except ApiError as exc:
            logger.warning("[Push] Could not save to server (offline mode): %s", exc.message)

        try:
            await self._store.save_subscription(
                endpoint=subscription.endpoint,
                keys=dict(subscription.keys),
                user_name=user.user_name,
                preferences=user.preferences,
            )
        except (StoreOperationError, StoreNotOpenError) as exc:
            raise PushSubscriptionError(f"Could not save the subscription locally: {exc}") from exc
        return subscription

    async def unsubscribe(self) -> bool:
        if self._subscription is None:
            logger.info("[Push] No subscription to unsubscribe")
            return True

        endpoint = self._subscription.endpoint
        try:
            await self._platform().unsubscribe()
        except PushPlatformError as exc:
            raise PushSubscriptionError(f"Push unsubscribe failed: {exc}") from exc
        self._subscription = None

        await self._remove_remote(endpoint)
        await self._remove_local()
        logger.info("[Push] Unsubscribed successfully")
        return True

    async def _remove_remote(self, endpoint: str) -> None:
        try:
            await self._api.unsubscribe(endpoint)
        except ApiError as exc:
            logger.warning("[Push] Could not remove from server: %s", exc.message)

    async def _remove_local(self) -> None:
        try:
            await self._store.delete_subscription()
        except (StoreOperationError, StoreNotOpenError) as exc:
            logger.warning("[Push] Could not remove local subscription: %s", exc)

    async def _expire(self) -> None:
        endpoint = self._subscription.endpoint
        logger.warning("[Push] Subscription expired, removing it everywhere")
        if self.is_supported:
            await self._platform().unsubscribe()
        self._subscription = None
        await self._remove_remote(endpoint)
        await self._remove_local()

    # ------------------------------------------------------------------
    # Status and test notifications
    # ------------------------------------------------------------------

    async def get_status(self) -> PushStatus:
        if not self.is_supported:
            return PushStatus(supported=False, subscribed=False, permission=PermissionState.UNSUPPORTED)

        try:
            stored = await self._store.get_subscription()
        except (StoreOperationError, StoreNotOpenError):
            stored = None
        return PushStatus(
            supported=True,
            subscribed=self.is_subscribed,
            permission=self._platform().permission,
            user_name=stored.user_name if stored is not None else None,
            preferences=list(stored.preferences or []) if stored is not None else [],
        )

    async def send_test_notification(self, title: str, body: str, data: dict[str, Any] | None = None) -> bool:
        """Ask the remote to push a notification to this subscription.

        Raises:
            PushSubscriptionError: Not subscribed.
            SubscriptionExpiredError: The remote answered ``410``; the
                subscription has been removed everywhere.
            ApiError: Sending failed and no local fallback was possible.
        """
        if self._subscription is None:
            raise PushSubscriptionError("Not subscribed to push notifications")

        timestamp = now_ms()
        notification = NotificationContent(
            title=title,
            body=body,
            icon=DEFAULT_NOTIFICATION["icon"],
            badge=DEFAULT_NOTIFICATION["badge"],
            tag=f"test-notification-{timestamp}",
            data={**(data or {}), "url": "/", "timestamp": timestamp},
        )
        try:
            await self._api.send_notification(self._subscription.endpoint, notification)
        except SubscriptionExpiredError:
            await self._expire()
            raise
        except ApiError as exc:
            logger.error("[Push] Send notification failed: %s", exc.message)
            if self._platform().permission == PermissionState.GRANTED:
                await self.show_local_notification(title, body, data)
                return True
            raise

        logger.info("[Push] Test notification sent")
        return True

    async def show_local_notification(self, title: str, body: str, data: dict[str, Any] | None = None) -> None:
        """Display through the active worker and record in the notification history."""
        worker = self._registration.active if self._registration is not None else None
        if worker is None:
            return
        await worker.show_local_notification(title, body, data)
        await self._store.add_notification(title, body, data or {})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _application_server_key(self) -> bytes:
        key = self._vapid_public_key
        if not key:
            try:
                key = await self._api.get_vapid_key()
            except ApiError as exc:
                raise PushSubscriptionError(f"Could not obtain the push server key: {exc.message}") from exc
            self._vapid_public_key = key
        try:
            return urlsafe_b64decode(key)
        except (ValueError, binascii.Error) as exc:
            raise PushSubscriptionError("The push server key is not valid base64") from exc

    def _user_data(self, user_data: UserData | dict[str, Any] | None) -> UserData:
        settings = get_settings()
        if isinstance(user_data, dict):
            user_data = UserData.model_validate(user_data)
        user = user_data or UserData()
        return UserData(
            user_name=user.user_name or settings.DEFAULT_USER_NAME,
            preferences=list(user.preferences),
            subscribed_at=datetime_to_iso(datetime.now(UTC)),
            user_agent=user.user_agent or USER_AGENT,
            language=user.language or settings.DEFAULT_LANGUAGE,
        )

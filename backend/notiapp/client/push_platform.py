"""Platform push manager: permission and the push subscription singleton.

:class:`LocalPushPlatform` stands in for the browser's push manager when the
app runs outside a browser.  It generates real Web Push key material
(an uncompressed P-256 public key and a 16-byte auth secret) so the
subscriptions it hands out can be used by pywebpush on the server.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from notiapp.config import get_settings
from notiapp.constants import PermissionState
from notiapp.schemas import SubscriptionInfo, SubscriptionKeys

logger = logging.getLogger(__name__)

PermissionPrompt = Callable[[], Awaitable[bool]]


class PushPlatformError(Exception):
    """Raised when the platform rejects a push subscription request."""


def urlsafe_b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def urlsafe_b64decode(value: str) -> bytes:
    """Decode URL-safe base64 with or without padding."""
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


@dataclass
class PushSubscriptionHandle:
    endpoint: str
    keys: dict[str, str] = field(default_factory=dict)
    expiration_time: int | None = None

    def to_info(self) -> SubscriptionInfo:
        return SubscriptionInfo(endpoint=self.endpoint, keys=SubscriptionKeys(**self.keys))


class PushPlatform(Protocol):
    @property
    def permission(self) -> PermissionState: ...

    async def request_permission(self) -> PermissionState: ...

    async def subscribe(self, application_server_key: bytes) -> PushSubscriptionHandle: ...

    async def get_subscription(self) -> PushSubscriptionHandle | None: ...

    async def unsubscribe(self) -> bool: ...


async def _grant() -> bool:
    return True


class LocalPushPlatform:
    """In-process push manager holding at most one subscription.

    Args:
        permission: Initial notification permission.
        prompt: Asked once while the permission is ``default``; its answer
            decides between ``granted`` and ``denied``.
        push_service_url: Base of generated endpoints; defaults to
            ``PUSH_SERVICE_URL``.
    """

    def __init__(
        self,
        permission: PermissionState = PermissionState.DEFAULT,
        prompt: PermissionPrompt | None = None,
        push_service_url: str | None = None,
    ) -> None:
        self._permission = permission
        self._prompt = prompt or _grant
        self._push_service_url = (push_service_url or get_settings().PUSH_SERVICE_URL).rstrip("/")
        self._subscription: PushSubscriptionHandle | None = None
        self._private_key: ec.EllipticCurvePrivateKey | None = None

    @property
    def permission(self) -> PermissionState:
        return self._permission

    async def request_permission(self) -> PermissionState:
        if self._permission == PermissionState.DEFAULT:
            granted = await self._prompt()
            self._permission = PermissionState.GRANTED if granted else PermissionState.DENIED
            logger.info("[Push] Permission status: %s", self._permission)
        return self._permission

    async def subscribe(self, application_server_key: bytes) -> PushSubscriptionHandle:
        if self._permission != PermissionState.GRANTED:
            raise PushPlatformError("Notification permission has not been granted")
        try:
            ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), application_server_key)
        except ValueError as exc:
            raise PushPlatformError(f"Invalid application server key: {exc}") from exc

        if self._subscription is not None:
            return self._subscription

        self._private_key = ec.generate_private_key(ec.SECP256R1())
        public_bytes = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )
        self._subscription = PushSubscriptionHandle(
            endpoint=f"{self._push_service_url}/{secrets.token_urlsafe(32)}",
            keys={"p256dh": urlsafe_b64encode(public_bytes), "auth": urlsafe_b64encode(os.urandom(16))},
        )
        logger.info("[Push] Subscribed successfully")
        return self._subscription

    async def get_subscription(self) -> PushSubscriptionHandle | None:
        return self._subscription

    async def unsubscribe(self) -> bool:
        if self._subscription is None:
            return False
        self._subscription = None
        self._private_key = None
        return True

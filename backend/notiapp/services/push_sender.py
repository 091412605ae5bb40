# @TASK P2-T2.2 - Web Push delivery with personalisation
# @TEST tests/test_push_sender.py

"""Web Push delivery for stored subscriptions.

``pywebpush`` performs a blocking HTTP request, so delivery runs in a
worker thread.  A ``404``/``410`` from the push service means the
subscription is gone for good and is reported as :class:`PushExpiredError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime

from pywebpush import WebPushException, webpush

from notiapp.config import get_settings
from notiapp.models import PushSubscription
from notiapp.schemas import NotificationContent
from notiapp.utils.datetime_utils import now_ms

logger = logging.getLogger(__name__)

_EXPIRED_STATUS_CODES: frozenset[int] = frozenset({404, 410})


class PushDeliveryError(Exception):
    """Raised when the push service rejects or cannot receive a message.

    Attributes:
        status_code: HTTP status returned by the push service, if any.
        message: A human-readable description.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class PushExpiredError(PushDeliveryError):
    """The push service reports the subscription as expired or unknown."""

    def __init__(self, status_code: int) -> None:
        super().__init__("Subscription expired", status_code)


def personalize_notification(notification: NotificationContent, subscription: PushSubscription) -> dict:
    """Build the JSON payload for *subscription* from a generic notification."""
    return {
        "title": notification.title or "NotiApp",
        "body": notification.body or "",
        "icon": notification.icon or "/icons/icon-192.svg",
        "badge": notification.badge or "/icons/icon-72.svg",
        "tag": notification.tag or f"notiapp-{now_ms()}",
        "data": {
            **notification.data,
            "userName": subscription.user_name,
            "preferences": list(subscription.preferences or []),
            "personalizedAt": datetime.now(UTC).isoformat(),
            "timestamp": now_ms(),
        },
    }


def _send(subscription_info: dict, payload: str, private_key: str, subject: str) -> None:
    webpush(
        subscription_info=subscription_info,
        data=payload,
        vapid_private_key=private_key,
        vapid_claims={"sub": subject},
    )


async def deliver(subscription: PushSubscription, payload: dict) -> None:
    """Send *payload* to *subscription* through its push service.

    Raises:
        PushExpiredError: The push service answered 404 or 410.
        PushDeliveryError: VAPID keys are missing or delivery failed otherwise.
    """
    settings = get_settings()
    if not settings.VAPID_PRIVATE_KEY:
        raise PushDeliveryError("VAPID keys not configured")

    subscription_info = {"endpoint": subscription.endpoint, "keys": subscription.keys}
    try:
        await asyncio.to_thread(
            _send,
            subscription_info,
            json.dumps(payload),
            settings.VAPID_PRIVATE_KEY,
            settings.VAPID_SUBJECT,
        )
    except WebPushException as exc:
        status_code = exc.response.status_code if exc.response is not None else None
        if status_code in _EXPIRED_STATUS_CODES:
            raise PushExpiredError(status_code) from exc
        logger.warning("[Push] WebPush failed for %s...: %s", subscription.endpoint[:40], exc)
        raise PushDeliveryError(str(exc), status_code) from exc

    logger.info("[Push] Delivered to %s", subscription.user_name)

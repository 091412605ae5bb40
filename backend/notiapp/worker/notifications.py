"""System notification tray used by the worker to display notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from notiapp.utils.datetime_utils import now_ms

logger = logging.getLogger(__name__)


@dataclass
class DisplayedNotification:
    title: str
    body: str = ""
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[dict[str, str]] = field(default_factory=list)
    vibrate: list[int] = field(default_factory=list)
    require_interaction: bool = False
    renotify: bool = False
    silent: bool = False
    shown_at: int = field(default_factory=now_ms)
    closed: bool = False


class NotificationTray:
    """Open notifications, at most one per tag.

    Showing a notification with the tag of an open one replaces it.
    """

    def __init__(self) -> None:
        self._open: list[DisplayedNotification] = []

    async def show(self, title: str, **options: Any) -> DisplayedNotification:
        if not isinstance(title, str):
            raise TypeError(f"Notification title must be a string, got {type(title).__name__}")
        notification = DisplayedNotification(title=title, **options)
        if notification.tag:
            for existing in [n for n in self._open if n.tag == notification.tag]:
                existing.closed = True
                self._open.remove(existing)
        self._open.append(notification)
        logger.debug("[Notifications] Showing %r (tag=%s)", title, notification.tag)
        return notification

    async def get_notifications(self, tag: str | None = None) -> list[DisplayedNotification]:
        return [n for n in self._open if tag is None or n.tag == tag]

    def close(self, notification: DisplayedNotification) -> None:
        notification.closed = True
        if notification in self._open:
            self._open.remove(notification)

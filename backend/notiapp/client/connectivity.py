"""Connectivity flag with online/offline listeners."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[], Awaitable[None]]


class Connectivity:
    """Believed network state of the page.

    ``set_online`` only notifies on transitions.  Listener failures are
    logged and do not stop the remaining listeners.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._on_online: list[Listener] = []
        self._on_offline: list[Listener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, *, on_online: Listener | None = None, on_offline: Listener | None = None) -> None:
        if on_online is not None:
            self._on_online.append(on_online)
        if on_offline is not None:
            self._on_offline.append(on_offline)

    async def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("[Connectivity] Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._on_online if online else self._on_offline):
            try:
                await listener()
            except Exception:
                logger.exception("[Connectivity] Listener failed")

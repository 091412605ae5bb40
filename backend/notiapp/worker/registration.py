# @TASK P2-T2.4 - Worker registration lifecycle (installing / waiting / active)
# @TEST tests/test_service_worker.py

"""Service worker registration: tracks installing, waiting and active workers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notiapp.constants import WorkerState
from notiapp.worker.clients import Clients, WindowClient
from notiapp.worker.service_worker import InstallError, ServiceWorker

if TYPE_CHECKING:
    from notiapp.client.push_platform import PushPlatform

logger = logging.getLogger(__name__)


class ServiceWorkerRegistration:
    """One registration per scope.

    A newly installed worker waits while pages are still controlled by the
    active worker, unless it asked to skip waiting.  It is promoted once
    those pages are released.
    """

    def __init__(self, scope: str, clients: Clients, push_manager: PushPlatform | None = None) -> None:
        self.scope = scope
        self.clients = clients
        self.push_manager = push_manager
        self.installing: ServiceWorker | None = None
        self.waiting: ServiceWorker | None = None
        self.active: ServiceWorker | None = None

    async def register(self, worker: ServiceWorker) -> ServiceWorker:
        """Install *worker* and activate it when nothing holds it back.

        Raises:
            InstallError: The worker failed to install; the registration
                keeps its previous workers.
        """
        worker.registration = self
        self.installing = worker
        try:
            await worker.install()
        except InstallError:
            logger.error("[Registration] Worker install failed for %s", self.scope)
            raise
        finally:
            self.installing = None

        if self.waiting is not None and self.waiting is not worker:
            self.waiting.state = WorkerState.REDUNDANT
        self.waiting = worker

        if worker.skip_waiting_requested or self.active is None or not self.clients.controlled_by(self.active):
            await self.activate_waiting()
        else:
            logger.info("[Registration] New worker installed, waiting for pages to close")
        return worker

    async def activate_waiting(self) -> None:
        worker = self.waiting
        if worker is None:
            return
        self.waiting = None
        previous = self.active
        self.active = worker
        if previous is not None and previous is not worker:
            previous.state = WorkerState.REDUNDANT
        await worker.activate()

    async def release(self, client: WindowClient) -> None:
        """Forget a closed page; promotes the waiting worker when it was the last one."""
        self.clients.detach(client)
        if self.waiting is not None and (self.active is None or not self.clients.controlled_by(self.active)):
            await self.activate_waiting()

    async def unregister(self) -> bool:
        for worker in (self.installing, self.waiting, self.active):
            if worker is not None:
                worker.state = WorkerState.REDUNDANT
        had_worker = self.active is not None
        self.installing = self.waiting = self.active = None
        return had_worker

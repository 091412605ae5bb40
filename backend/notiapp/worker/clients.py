"""Window clients (open pages) as seen from the worker."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from notiapp.worker.messages import WorkerMessage

if TYPE_CHECKING:
    from notiapp.worker.service_worker import ServiceWorker

logger = logging.getLogger(__name__)


class WindowClient:
    """An open page.  Messages posted by the worker queue in its inbox."""

    def __init__(self, url: str, client_id: str | None = None) -> None:
        self.id = client_id or str(uuid.uuid4())
        self.url = url
        self.focused = False
        self.controller: ServiceWorker | None = None
        self._inbox: asyncio.Queue[WorkerMessage] = asyncio.Queue()

    def __repr__(self) -> str:
        return f"WindowClient({self.url!r}, id={self.id!r})"

    def post_message(self, message: WorkerMessage) -> None:
        """Deliver *message* to this page without waiting for it to be handled."""
        self._inbox.put_nowait(message)

    async def focus(self) -> WindowClient:
        self.focused = True
        return self

    async def next_message(self) -> WorkerMessage:
        return await self._inbox.get()

    def drain(self) -> list[WorkerMessage]:
        """Pop every queued message."""
        messages: list[WorkerMessage] = []
        while not self._inbox.empty():
            messages.append(self._inbox.get_nowait())
        return messages


class Clients:
    """Registry of the pages in the worker's scope."""

    def __init__(self) -> None:
        self._clients: dict[str, WindowClient] = {}

    def attach(self, client: WindowClient) -> WindowClient:
        self._clients[client.id] = client
        return client

    def detach(self, client: WindowClient) -> None:
        self._clients.pop(client.id, None)

    async def get(self, client_id: str) -> WindowClient | None:
        return self._clients.get(client_id)

    async def match_all(self, include_uncontrolled: bool = False) -> list[WindowClient]:
        return [c for c in self._clients.values() if include_uncontrolled or c.controller is not None]

    async def open_window(self, url: str) -> WindowClient:
        client = self.attach(WindowClient(url))
        client.focused = True
        logger.info("[Clients] Opened window %s", url)
        return client

    async def claim(self, worker: ServiceWorker) -> None:
        """Make *worker* the controller of every attached page."""
        for client in self._clients.values():
            client.controller = worker

    def controlled_by(self, worker: ServiceWorker) -> list[WindowClient]:
        return [c for c in self._clients.values() if c.controller is worker]

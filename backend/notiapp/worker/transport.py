# @TASK P2-T2.3 - httpx transport that routes page requests through the worker
# @TEST tests/test_service_worker.py

"""The page's HTTP transport.

Every request the page makes goes through :class:`MediatorTransport`.
When the page is controlled by an activated worker, the worker gets the
first chance to answer; requests it does not intercept (non-GET,
cross-origin) and all requests made while uncontrolled reach the network
untouched.
"""

from __future__ import annotations

import logging

import httpx

from notiapp.constants import WorkerState
from notiapp.worker.clients import WindowClient

logger = logging.getLogger(__name__)


class MediatorTransport(httpx.AsyncBaseTransport):
    """Async transport placing the page's controller in front of *network*."""

    def __init__(self, client: WindowClient, network: httpx.AsyncBaseTransport) -> None:
        self._client = client
        self._network = network

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        worker = self._client.controller
        if worker is not None and worker.state == WorkerState.ACTIVATED:
            response = await worker.handle_fetch(request)
            if response is not None:
                return response
        return await self._network.handle_async_request(request)

    async def aclose(self) -> None:
        await self._network.aclose()

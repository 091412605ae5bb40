# @TASK P1-T1.3 - Remote API client (data + push endpoints)
# @TEST tests/test_api_client.py

"""Async client for the NotiApp remote endpoints.

All requests go through an :class:`httpx.AsyncClient`.  In the page
context its transport is the network mediator
(:class:`~notiapp.worker.transport.MediatorTransport`), so GET requests
may be answered from cache and a synthesised ``503 Offline`` stands in
for an unreachable network.

Error mapping:

- transport failure or ``503`` → :class:`ApiUnavailableError`
- ``410``                      → :class:`SubscriptionExpiredError`
- any other non-2xx            → :class:`ApiError`
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from notiapp.config import get_settings
from notiapp.schemas import (
    NoteListResponse,
    NotificationContent,
    SaveNoteRequest,
    SaveNoteResponse,
    SubscribeRequest,
    SubscriptionInfo,
    SyncItem,
    SyncRequest,
    SyncResponse,
    UnsubscribeRequest,
    UnsubscribeResponse,
    UserData,
    VapidKeyResponse,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ApiError(Exception):
    """Raised when a remote endpoint answers with a non-2xx status or an unreadable body.

    Attributes:
        status_code: HTTP status, or ``None`` when no response was received.
        message: A human-readable description.
    """

    def __init__(self, status_code: int | None, message: str | None = None) -> None:
        self.status_code = status_code
        self.message = message or f"Remote API error (status: {status_code})"
        super().__init__(self.message)


class ApiUnavailableError(ApiError):
    """The remote could not be reached (network down or offline fallback)."""


class SubscriptionExpiredError(ApiError):
    """The remote reports the push subscription as expired (HTTP 410)."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(410, message or "Subscription expired")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body.get("error") or body)
    return str(body)


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ApiError(response.status_code, "Invalid response body") from exc


def _parse(response: httpx.Response, model: type[ModelT]) -> ModelT:
    """Validate a 2xx body; captive portals and proxies answer 200 with HTML."""
    try:
        return model.model_validate(response.json())
    except ValueError as exc:
        raise ApiError(response.status_code, "Invalid response body") from exc


class NotiApiClient:
    """Typed client for ``/api/data/*`` and ``/api/push/*``.

    Args:
        base_url: Origin of the app (the API lives under ``/api``).
        transport: Optional httpx transport, normally the network mediator.
        timeout: Request timeout in seconds; defaults to ``HTTP_TIMEOUT``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url: str = (base_url or settings.APP_ORIGIN).rstrip("/")
        self._client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=self._base_url,
            transport=transport,
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.info("[Api] %s %s failed: %s", method, path, exc)
            raise ApiUnavailableError(None, f"Network error: {exc}") from exc

        if response.status_code == 410:
            raise SubscriptionExpiredError(_error_message(response))
        if response.status_code == 503:
            raise ApiUnavailableError(503, _error_message(response))
        if response.is_error:
            raise ApiError(response.status_code, _error_message(response))
        return response

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def save_note(self, client_id: str, text: str) -> SaveNoteResponse:
        body = SaveNoteRequest(client_id=client_id, text=text).to_wire()
        response = await self._request("POST", "/api/data/save", json=body)
        return _parse(response, SaveNoteResponse)

    async def sync_notes(self, items: list[SyncItem]) -> SyncResponse:
        body = SyncRequest(items=items).to_wire()
        response = await self._request("POST", "/api/data/sync", json=body)
        return _parse(response, SyncResponse)

    async def list_notes(self) -> NoteListResponse:
        response = await self._request("GET", "/api/data/list")
        return _parse(response, NoteListResponse)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def subscribe(self, subscription: SubscriptionInfo, user_data: UserData) -> None:
        body = SubscribeRequest(subscription=subscription, user_data=user_data).to_wire()
        await self._request("POST", "/api/push/subscribe", json=body)

    async def unsubscribe(self, endpoint: str) -> UnsubscribeResponse:
        body = UnsubscribeRequest(endpoint=endpoint).to_wire()
        response = await self._request("POST", "/api/push/unsubscribe", json=body)
        return _parse(response, UnsubscribeResponse)

    async def send_notification(self, endpoint: str, notification: NotificationContent) -> dict:
        body = {"endpoint": endpoint, "notification": notification.to_wire()}
        response = await self._request("POST", "/api/push/send", json=body)
        return _json(response)

    async def get_vapid_key(self) -> str:
        response = await self._request("GET", "/api/push/vapid-key")
        return _parse(response, VapidKeyResponse).public_key

    async def health(self) -> dict:
        response = await self._request("GET", "/api/health")
        return _json(response)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Dispose the underlying ``httpx.AsyncClient``."""
        await self._client.aclose()

    async def __aenter__(self) -> NotiApiClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

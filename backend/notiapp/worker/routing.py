"""Request routing for the network mediator."""

from __future__ import annotations

from enum import StrEnum

import httpx

OFFLINE_API_BODY = {"error": "Offline", "message": "No cached data available"}

_DEFAULT_PORTS = {"http": 80, "https": 443}


class Strategy(StrEnum):
    NETWORK_FIRST = "network-first"
    CACHE_FIRST = "cache-first"


def origin_of(url: httpx.URL | str) -> tuple[str, str, int | None]:
    url = httpx.URL(url)
    return url.scheme, url.host, url.port or _DEFAULT_PORTS.get(url.scheme)


def is_same_origin(url: httpx.URL | str, origin: str) -> bool:
    return origin_of(url) == origin_of(origin)


def choose_strategy(request: httpx.Request, origin: str, api_prefix: str) -> Strategy | None:
    """Pick the caching strategy for *request*, or ``None`` to leave it alone.

    Only same-origin GET requests are intercepted.  Paths under
    *api_prefix* go network-first, everything else cache-first.
    """
    if request.method != "GET":
        return None
    if not is_same_origin(request.url, origin):
        return None
    if request.url.path.startswith(api_prefix):
        return Strategy.NETWORK_FIRST
    return Strategy.CACHE_FIRST


def offline_api_response() -> httpx.Response:
    return httpx.Response(503, json=OFFLINE_API_BODY)


def offline_page_response() -> httpx.Response:
    return httpx.Response(503, text="Offline")

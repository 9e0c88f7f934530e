"""
Shared long-lived httpx.AsyncClient for the Expo push API.
Created once in the app lifespan; every push send reuses its connection pool.
"""
from __future__ import annotations

import httpx

from accountability.config import settings

_http_client: httpx.AsyncClient | None = None


def _expo_headers() -> dict[str, str]:
    headers = {"Accept": "application/json", "Accept-Encoding": "gzip, deflate"}
    if settings.expo_access_token.strip():
        # Required only when enhanced push security is enabled for the Expo project
        headers["Authorization"] = f"Bearer {settings.expo_access_token.strip()}"
    return headers


def get_http_client() -> httpx.AsyncClient:
    """Return the shared client. Push sends outside the app (scripts, cron) must call init_http_client() first."""
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized; ensure app lifespan has run init_http_client().")
    return _http_client


def init_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=timeout, headers=_expo_headers())
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None

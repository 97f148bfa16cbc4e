"""
Client-side token sources.

Each source asks the bridge server for a fresh bearer token and returns it as a
`Token`. The browser never sees app secrets, only these short-lived tokens.

    apple    GET  /api/token             -> {token, expiresAt}
    spotify  POST /api/token/refresh     -> {accessToken, refreshToken, expiresAt}
    youtube  POST /api/auth/refresh      -> {accessToken, expiresAt}
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from tunebridge.errors import CredentialsMissing, TokenExchangeFailed
from tunebridge.models.token import Token, parse_iso, utc_from_timestamp


class TokenSource(Protocol):
    async def fetch(self) -> Token: ...


class _ServerSource:
    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._clock = clock
        self._timeout = timeout

    async def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                r = await client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(f"Failed to fetch token: {type(exc).__name__}") from exc

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if r.status_code == 401:
            raise CredentialsMissing(data.get("error") or None)
        if r.status_code >= 400:
            raise TokenExchangeFailed(data.get("error") or "Failed to fetch token")
        return data

    def _token(self, value: Any, expires_at: Any) -> Token:
        if not value or not expires_at:
            raise TokenExchangeFailed("Malformed token response")
        return Token(
            value=str(value),
            issued_at=utc_from_timestamp(self._clock()),
            expires_at=parse_iso(str(expires_at)),
        )


class AppleTokenSource(_ServerSource):
    async def fetch(self) -> Token:
        data = await self._call("GET", "/api/token")
        return self._token(data.get("token"), data.get("expiresAt"))


class SpotifyTokenSource(_ServerSource):
    """Holds the user's refresh token (the browser's copy) and trades it for access tokens."""

    def __init__(self, base_url: str, refresh_token: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.refresh_token = refresh_token

    async def fetch(self) -> Token:
        if not self.refresh_token:
            raise CredentialsMissing("No refresh token available")
        data = await self._call("POST", "/api/token/refresh", {"refreshToken": self.refresh_token})
        if data.get("refreshToken"):
            self.refresh_token = str(data["refreshToken"])
        return self._token(data.get("accessToken"), data.get("expiresAt"))


class YouTubeTokenSource(_ServerSource):
    async def fetch(self) -> Token:
        data = await self._call("POST", "/api/auth/refresh")
        return self._token(data.get("accessToken"), data.get("expiresAt"))


def token_source_for(vendor: str, base_url: str, **kwargs: Any) -> _ServerSource:
    sources = {"apple": AppleTokenSource, "spotify": SpotifyTokenSource, "youtube": YouTubeTokenSource}
    try:
        return sources[vendor](base_url, **kwargs)
    except KeyError:
        raise ValueError(f"unknown vendor: {vendor}") from None

"""
Vendor OAuth token endpoint adapter (Spotify accounts, Google OAuth 2.0).

Goals
- One small client for the two grant types we use: authorization_code and refresh_token.
- Spotify wants the app credentials as HTTP Basic auth; Google wants them in the form body.
- Never log tokens or secrets. Vendor errors become TokenExchangeFailed with the vendor's own message.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx
from loguru import logger

from tunebridge.errors import TokenExchangeFailed
from tunebridge.models.token import to_iso, utc_from_timestamp

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: str = ""
    token_type: str = "Bearer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": to_iso(self.expires_at),
            "scope": self.scope,
        }


class OAuthClient:
    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        basic_auth: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ) -> None:
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._basic_auth = basic_auth
        self._transport = transport
        self._clock = clock
        self._timeout = timeout

    @classmethod
    def spotify(cls, client_id: str, client_secret: str, **kwargs: Any) -> "OAuthClient":
        return cls(SPOTIFY_TOKEN_URL, client_id, client_secret, basic_auth=True, **kwargs)

    @classmethod
    def google(cls, client_id: str, client_secret: str, **kwargs: Any) -> "OAuthClient":
        return cls(GOOGLE_TOKEN_URL, client_id, client_secret, basic_auth=False, **kwargs)

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: Optional[str] = None
    ) -> OAuthTokens:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return await self._request(data, fallback_refresh=None, what="Token exchange")

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        # Vendors may rotate the refresh token or leave it out; keep the old one then
        return await self._request(data, fallback_refresh=refresh_token, what="Token refresh")

    async def _request(
        self, data: Dict[str, str], fallback_refresh: Optional[str], what: str
    ) -> OAuthTokens:
        auth: Optional[httpx.BasicAuth] = None
        if self._basic_auth:
            auth = httpx.BasicAuth(self._client_id, self._client_secret)
        else:
            data = {**data, "client_id": self._client_id, "client_secret": self._client_secret}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(
                    self.token_url,
                    data=data,
                    auth=auth,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as exc:
            logger.warning("{} request failed: {}", what, type(exc).__name__)
            raise TokenExchangeFailed(f"{what} failed") from exc

        body = _json(r)
        if r.status_code != 200:
            message = body.get("error_description") or body.get("error") or f"{what} failed"
            logger.warning("{} rejected ({}): {}", what, r.status_code, body.get("error", ""))
            raise TokenExchangeFailed(str(message))

        access = body.get("access_token")
        if not access:
            raise TokenExchangeFailed(f"{what} failed: no access token in response")

        expires_in = int(body.get("expires_in") or 3600)
        return OAuthTokens(
            access_token=str(access),
            refresh_token=body.get("refresh_token") or fallback_refresh,
            expires_at=utc_from_timestamp(int(self._clock()) + expires_in),
            scope=str(body.get("scope") or ""),
            token_type=str(body.get("token_type") or "Bearer"),
        )


def _json(r: httpx.Response) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

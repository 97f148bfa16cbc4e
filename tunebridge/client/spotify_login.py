"""
Goal: Browser side of the Spotify PKCE login.
- `begin` makes a verifier + state, remembers both, and returns the authorize URL.
- `complete` gets the code and state that /callback bounced back, checks the state,
  and trades the code (with our verifier) at /api/token/exchange.
- A state mismatch abandons the attempt; the caller has to `begin` again.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Dict, Optional

import httpx
from loguru import logger

from tunebridge import settings
from tunebridge.auth.pkce import (
    build_authorization_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from tunebridge.client.tokens import SpotifyTokenSource
from tunebridge.errors import CredentialsMissing, StateMismatch, TokenExchangeFailed


class SpotifyLogin:
    def __init__(
        self,
        base_url: str,
        redirect_uri: str = settings.SPOTIFY_REDIRECT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.redirect_uri = redirect_uri
        self._transport = transport
        self._clock = clock
        self._timeout = timeout
        self._verifier: Optional[str] = None
        self._state: Optional[str] = None
        self.tokens: Optional[Dict[str, Any]] = None

    @property
    def pending(self) -> bool:
        return self._state is not None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._transport)

    async def client_id(self) -> str:
        """The public client id, as the server reports it from /api/credentials."""
        async with self._client() as client:
            r = await client.get("/api/credentials")
        data = r.json() if r.status_code == 200 else {}
        if not data.get("configured") or not data.get("clientId"):
            raise CredentialsMissing()
        return str(data["clientId"])

    async def begin(self, client_id: Optional[str] = None) -> str:
        client_id = client_id or await self.client_id()
        self._verifier = generate_code_verifier()
        self._state = generate_state()
        return build_authorization_url(
            client_id, self.redirect_uri, generate_code_challenge(self._verifier), self._state
        )

    async def complete(self, code: str, state: str) -> Dict[str, Any]:
        expected, verifier = self._state, self._verifier
        # One attempt per begin(), whatever happens below
        self._state = self._verifier = None
        if not expected or not verifier or not secrets.compare_digest(expected, state or ""):
            logger.warning("Spotify login state mismatch; attempt abandoned")
            raise StateMismatch()

        payload = {"code": code, "codeVerifier": verifier, "redirectUri": self.redirect_uri}
        try:
            async with self._client() as client:
                r = await client.post("/api/token/exchange", json=payload)
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(f"Token exchange failed: {type(exc).__name__}") from exc

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code == 401:
            raise CredentialsMissing(data.get("error") or None)
        if r.status_code != 200 or not data.get("accessToken"):
            raise TokenExchangeFailed(data.get("error") or "Token exchange failed")

        self.tokens = data
        logger.info("Spotify login complete")
        return data

    def token_source(self) -> SpotifyTokenSource:
        """A token source primed with the refresh token from the last completed login."""
        refresh_token = (self.tokens or {}).get("refreshToken")
        if not refresh_token:
            raise CredentialsMissing("No refresh token available")
        return SpotifyTokenSource(
            self.base_url, refresh_token=refresh_token, transport=self._transport, clock=self._clock
        )

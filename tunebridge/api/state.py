"""
Goal: Everything one server app shares across requests, built once and hung on `app.state`.
Handlers get it through `get_state` instead of importing module globals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional

import httpx
from fastapi import Request

from tunebridge import settings
from tunebridge.adapters.oauth import OAuthClient
from tunebridge.auth.cache import TokenCache
from tunebridge.auth.credentials import CredentialStore
from tunebridge.auth.issuer import TokenIssuer
from tunebridge.auth.origins import allowed_origins, get_local_ip
from tunebridge.auth.sessions import SessionManager
from tunebridge.auth.user_tokens import UserTokenSlot
from tunebridge.errors import CredentialsMissing
from tunebridge.models.schemas import GoogleCredentials, SpotifyCredentials


@dataclass
class ServerState:
    vendor: str
    store: CredentialStore
    issuer: TokenIssuer
    cache: TokenCache
    sessions: SessionManager
    user_tokens: UserTokenSlot
    allowed_origins: FrozenSet[str] = frozenset()
    clock: Callable[[], float] = time.time
    oauth_transport: Optional[httpx.AsyncBaseTransport] = None
    redirect_uri: str = settings.YOUTUBE_REDIRECT
    proxy_lifetime: int = settings.PROXY_TOKEN_LIFETIME
    proxy_buffer: int = settings.PROXY_TOKEN_BUFFER
    port: int = settings.TB_PORT
    _unsubscribe: Optional[Callable[[], None]] = field(default=None, repr=False)

    def init(self) -> None:
        self.store.init()
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_credentials_changed)

    def reset(self) -> None:
        self.store.reset()
        self.sessions.clear()

    def _on_credentials_changed(self) -> None:
        # Anything derived from the old credentials goes with them
        self.cache.invalidate()
        self.user_tokens.clear()

    def oauth_client(self) -> OAuthClient:
        creds = self.store.get_credentials()
        if isinstance(creds, SpotifyCredentials):
            return OAuthClient.spotify(
                creds.client_id, creds.client_secret, transport=self.oauth_transport, clock=self.clock
            )
        if isinstance(creds, GoogleCredentials):
            return OAuthClient.google(
                creds.client_id, creds.client_secret, transport=self.oauth_transport, clock=self.clock
            )
        raise CredentialsMissing()


def build_state(
    vendor: str,
    *,
    clock: Callable[[], float] = time.time,
    oauth_transport: Optional[httpx.AsyncBaseTransport] = None,
    port: int = settings.TB_PORT,
    local_ip: Optional[str] = None,
) -> ServerState:
    if vendor not in settings.VENDORS:
        raise ValueError(f"unknown vendor: {vendor}")
    store = CredentialStore()
    issuer = TokenIssuer(store, clock=clock)
    state = ServerState(
        vendor=vendor,
        store=store,
        issuer=issuer,
        cache=TokenCache(issuer, clock=clock),
        sessions=SessionManager(
            issuer,
            lifetime_seconds=settings.SESSION_TOKEN_LIFETIME,
            rotation_threshold=settings.ROTATION_THRESHOLD,
            clock=clock,
        ),
        user_tokens=UserTokenSlot(),
        allowed_origins=allowed_origins(port, local_ip if local_ip is not None else get_local_ip()),
        clock=clock,
        oauth_transport=oauth_transport,
        redirect_uri=f"http://localhost:{port}/api/auth/callback",
        port=port,
    )
    state.init()
    return state


def get_state(request: Request) -> ServerState:
    return request.app.state.bridge

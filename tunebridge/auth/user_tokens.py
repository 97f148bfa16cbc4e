"""
Goal: Server-held OAuth tokens for the YouTube flow (one user, process memory only).
The browser only ever sees the short-lived access token, never the refresh token.
"""

from __future__ import annotations

import secrets
import threading
from typing import Optional

from tunebridge.adapters.oauth import OAuthTokens


class UserTokenSlot:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: Optional[OAuthTokens] = None
        self._pending_state: Optional[str] = None
        # Bumped by clear(); a write begun before a clear is dropped
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def store(self, tokens: OAuthTokens, generation: Optional[int] = None) -> bool:
        """Keep `tokens`. With a `generation`, only if nothing was cleared since it was read."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._tokens = tokens
            return True

    def get(self) -> Optional[OAuthTokens]:
        return self._tokens

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._tokens = None
            self._pending_state = None

    def is_authorized(self, now: float) -> bool:
        tokens = self._tokens
        return tokens is not None and tokens.expires_at.timestamp() > now

    @property
    def refresh_token(self) -> Optional[str]:
        tokens = self._tokens
        return tokens.refresh_token if tokens else None

    # ---- anti-CSRF state for the login redirect ----

    def begin_login(self) -> str:
        state = secrets.token_urlsafe(16)
        with self._lock:
            self._pending_state = state
        return state

    def consume_state(self, state: Optional[str]) -> bool:
        """True iff `state` matches the pending login. The pending value is used up either way."""
        with self._lock:
            expected, self._pending_state = self._pending_state, None
        return bool(expected) and bool(state) and secrets.compare_digest(expected, state or "")

"""
Goal: Single-slot memo for the app-wide developer token behind /api/token.
Fine for one anonymous developer token shared by all catalog calls; not per-session.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from loguru import logger

from tunebridge.auth.issuer import TokenIssuer
from tunebridge.models.token import Token


class TokenCache:
    def __init__(self, issuer: TokenIssuer, clock: Callable[[], float] = time.time) -> None:
        self._issuer = issuer
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[Token] = None

    def get_or_issue(self, lifetime_seconds: int, buffer_seconds: int) -> Token:
        """Serve the cached token while it has more than `buffer_seconds` left, else re-sign."""
        with self._lock:
            cached = self._token
            if cached is not None and cached.seconds_remaining(self._clock()) > buffer_seconds:
                return cached
            token = self._issuer.issue(lifetime_seconds)
            self._token = token
        logger.info("Developer token issued (expires {})", token.expires_at.isoformat())
        return token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def peek(self) -> Optional[Token]:
        return self._token

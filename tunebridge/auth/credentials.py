"""
Goal: Hold the app credentials (team key or client id/secret) in process memory only.

One store per server app. It is injected into the request handlers instead of
living in a module global, so tests can build a fresh one per case.
Listeners (token cache, OAuth slot) are told synchronously on every change, so
nothing signed with old credentials survives a reconfiguration.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional

from loguru import logger

from tunebridge.models.schemas import Credentials

ChangeListener = Callable[[], None]


class CredentialStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: Optional[Credentials] = None
        self._listeners: List[ChangeListener] = []

    # ---- lifecycle ----

    def init(self) -> None:
        """Start empty. Safe to call more than once."""
        with self._lock:
            self._credentials = None

    def reset(self) -> None:
        self.clear_credentials()

    # ---- contract ----

    def set_credentials(self, bundle: Credentials) -> None:
        with self._lock:
            self._credentials = bundle
            self._notify()
        logger.info("Credentials configured ({})", type(bundle).__name__)

    def has_credentials(self) -> bool:
        return self._credentials is not None

    def get_credentials(self) -> Optional[Credentials]:
        return self._credentials

    def clear_credentials(self) -> None:
        with self._lock:
            had = self._credentials is not None
            self._credentials = None
            self._notify()
        if had:
            logger.info("Credentials cleared")

    def _notify(self) -> None:
        # Runs under the lock: once set/clear returns, every cache has been dropped
        for listener in list(self._listeners):
            listener()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Call `listener` after every set/clear. Returns an unsubscribe handle."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

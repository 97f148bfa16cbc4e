"""
Session-based token management with hitless rotation.

Each session holds a ``current`` token and, once ``current`` has used up the
rotation threshold of its lifetime, a pre-generated ``next`` token. The client
builds a fresh player with ``next`` between playback events and then calls
rotate, which promotes ``next`` without another signing round trip.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger

from tunebridge.auth.issuer import TokenIssuer
from tunebridge.models.token import Token, to_iso, utc_from_timestamp

TOKEN_LIFETIME_SEC = 60 * 60
ROTATION_THRESHOLD = 0.8


@dataclass
class Session:
    id: str
    current: Token
    next: Optional[Token] = None
    created_at: Optional[datetime] = None

    @property
    def latest(self) -> Token:
        return self.next or self.current


class SessionManager:
    def __init__(
        self,
        issuer: TokenIssuer,
        lifetime_seconds: int = TOKEN_LIFETIME_SEC,
        rotation_threshold: float = ROTATION_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._issuer = issuer
        self._lifetime = lifetime_seconds
        self._threshold = rotation_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _issue(self) -> Token:
        return self._issuer.issue(self._lifetime)

    def should_rotate(self, token: Token) -> bool:
        """True once `token` has lived through the rotation threshold of its lifetime."""
        elapsed = self._clock() - token.issued_at.timestamp()
        return elapsed >= token.lifetime_seconds * self._threshold

    def create_session(self) -> Session:
        current = self._issue()
        session = Session(
            id=str(uuid.uuid4()),
            current=current,
            created_at=utc_from_timestamp(self._clock()),
        )
        with self._lock:
            self._sessions[session.id] = session
        logger.info("Session {} created", session.id)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Look up a session, preparing `next` ahead of time once `current` is due."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.next is None and self.should_rotate(session.current):
                session.next = self._issue()
                logger.info("Session {}: next token prepared", session_id)
            return session

    def rotate_session(self, session_id: str) -> Optional[Session]:
        """Promote `next` to `current`, or force a new `current` if none was prepared."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.next is not None:
                session.current = session.next
                session.next = None
            else:
                session.current = self._issue()
            logger.info("Session {} rotated", session_id)
            return session

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_sessions(self) -> int:
        """Drop every session whose latest token has already expired. Returns how many."""
        now = self._clock()
        with self._lock:
            dead = [sid for sid, s in self._sessions.items() if s.latest.is_expired(now)]
            for sid in dead:
                del self._sessions[sid]
        if dead:
            logger.info("Cleaned up {} expired session(s)", len(dead))
        return len(dead)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def session_info(self, session: Session) -> Dict[str, Any]:
        """Client-facing view; internal bookkeeping stays here."""
        return {
            "sessionId": session.id,
            "current": {
                "token": session.current.value,
                "expiresAt": to_iso(session.current.expires_at),
            },
            "next": (
                {"token": session.next.value, "expiresAt": to_iso(session.next.expires_at)}
                if session.next is not None
                else None
            ),
            "shouldRotate": self.should_rotate(session.current),
        }

"""
Goal: The token value type shared by the server (issuer, cache, sessions) and the client controller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def to_iso(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z (what browsers emit)."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Token:
    """A bearer token and its validity window. Immutable once issued."""

    value: str
    issued_at: datetime
    expires_at: datetime

    @property
    def lifetime_seconds(self) -> float:
        return (self.expires_at - self.issued_at).total_seconds()

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at.timestamp() - now

    def is_expired(self, now: float) -> bool:
        return self.expires_at.timestamp() < now

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.value, "expiresAt": to_iso(self.expires_at)}

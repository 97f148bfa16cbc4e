"""
Goal: One small exception family for the whole bridge.
Each error knows the HTTP status it maps to, so routes can just raise.
"""

from __future__ import annotations

from typing import Optional


class TuneBridgeError(Exception):
    """Base class; `status_code` is what the API answers with."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidRequest(TuneBridgeError):
    """Missing or empty fields in a credential bundle or request body."""

    status_code = 400
    default_message = "Invalid request"


class CredentialsMissing(TuneBridgeError):
    status_code = 401
    default_message = "Credentials not configured"


class OriginForbidden(TuneBridgeError):
    status_code = 403
    default_message = "Forbidden"


class StateMismatch(TuneBridgeError):
    """OAuth `state` did not match the one we sent (possible CSRF)."""

    status_code = 400
    default_message = "State mismatch"


class SigningError(TuneBridgeError):
    default_message = "Token signing failed"


class TokenExchangeFailed(TuneBridgeError):
    default_message = "Token exchange failed"


class RotationFailed(TuneBridgeError):
    """A step of the client rotation pipeline failed. Logged, never surfaced."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"rotation step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause

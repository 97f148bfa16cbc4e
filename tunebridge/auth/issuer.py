"""
Apple Music developer token issuer.

Builds an ES256 JWT asserting the team as issuer, signed with the team's
MusicKit private key (PKCS#8 PEM). Lifetimes are whole seconds so that
``expires_at - issued_at`` is exactly the requested lifetime.

See https://developer.apple.com/documentation/applemusicapi/generating-developer-tokens
"""

from __future__ import annotations

import time
from typing import Callable

import jwt
from cryptography.exceptions import UnsupportedAlgorithm

from tunebridge.auth.credentials import CredentialStore
from tunebridge.errors import CredentialsMissing, SigningError
from tunebridge.models.schemas import AppleCredentials
from tunebridge.models.token import Token, utc_from_timestamp

ALGORITHM = "ES256"

Clock = Callable[[], float]


def issue_developer_token(credentials: AppleCredentials, lifetime_seconds: int, now: int) -> Token:
    """Sign a developer token valid from `now` for `lifetime_seconds`."""
    exp = now + int(lifetime_seconds)
    payload = {"iss": credentials.team_id, "iat": now, "exp": exp}
    headers = {"kid": credentials.key_id}

    try:
        value = jwt.encode(payload, credentials.private_key, algorithm=ALGORITHM, headers=headers)
    except (ValueError, TypeError, UnsupportedAlgorithm, jwt.PyJWTError) as exc:
        # Never echo the key material back
        raise SigningError(f"Could not sign developer token: {type(exc).__name__}") from exc

    return Token(value=value, issued_at=utc_from_timestamp(now), expires_at=utc_from_timestamp(exp))


class TokenIssuer:
    """Issues tokens from whatever credentials the store currently holds."""

    def __init__(self, store: CredentialStore, clock: Clock = time.time) -> None:
        self._store = store
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def issue(self, lifetime_seconds: int) -> Token:
        credentials = self._store.get_credentials()
        if credentials is None:
            raise CredentialsMissing()
        if not isinstance(credentials, AppleCredentials):
            raise SigningError("Stored credentials cannot sign developer tokens")
        return issue_developer_token(credentials, lifetime_seconds, self.now())

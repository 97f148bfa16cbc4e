"""
Goal: PKCE (Proof Key for Code Exchange) helpers for the Spotify login.
- Verifier: 43-128 chars from the unreserved alphabet.
- Challenge: base64url(SHA-256(verifier)) without '=' padding (S256).
- State: random hex echoed back by Spotify, checked for CSRF.
"""

# stdlib imports
import base64  # base64url encode the SHA-256 digest
import hashlib  # S256 challenge
import secrets  # CSPRNG for verifier and state
from typing import Optional, Sequence

from httpx import QueryParams  # same query encoding the adapters use

AUTH_URL = "https://accounts.spotify.com/authorize"

_UNRESERVED = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

DEFAULT_SCOPES = (
    # Listening history
    "user-read-recently-played",
    "user-read-playback-position",
    "user-top-read",
    # Spotify Connect
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    # Playback (requires Premium)
    "streaming",
    # Playlists
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
    # Library
    "user-library-read",
    "user-library-modify",
    # Follow
    "user-follow-read",
    "user-follow-modify",
    # Profile
    "user-read-email",
    "user-read-private",
)


def generate_code_verifier(length: int = 64) -> str:
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be between 43 and 128")
    return "".join(secrets.choice(_UNRESERVED) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state(length: int = 16) -> str:
    return secrets.token_hex(length)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
    scopes: Optional[Sequence[str]] = None,
) -> str:
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "state": state,
        "scope": " ".join(scopes or DEFAULT_SCOPES),
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
    }
    return f"{AUTH_URL}?{QueryParams(params)}"

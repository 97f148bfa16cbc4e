"""
Goal: Spotify app routes. The callback bounces the code back to the SPA, and
the token endpoints are origin-checked and proxy to a mocked accounts service.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

SPOTIFY = {"clientId": "spotify-client", "clientSecret": "spotify-secret"}
EXCHANGE = {"code": "c0de", "codeVerifier": "v" * 64, "redirectUri": "http://127.0.0.1:3000/callback"}


class FakeAccounts:
    """Stands in for accounts.spotify.com/api/token."""

    def __init__(self) -> None:
        self.requests = []
        self.status = 200
        self.body = {
            "access_token": "BQD-access",
            "refresh_token": "AQC-refresh",
            "expires_in": 3600,
            "scope": "streaming user-read-email",
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return httpx.Response(self.status, json=self.body)


@pytest.fixture
def accounts():
    return FakeAccounts()


@pytest.fixture
def spotify(make_client, accounts):
    client, state = make_client("spotify", transport=httpx.MockTransport(accounts))
    client.post("/api/credentials", json=SPOTIFY)
    return client, state


def _query(r):
    return {k: v[0] for k, v in parse_qs(urlparse(r.headers["location"]).query).items()}


def test_callback_bounces_code_and_state(spotify):
    client, _ = spotify
    r = client.get("/callback", params={"code": "abc", "state": "xyz"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith("/?")
    assert _query(r) == {"auth_code": "abc", "auth_state": "xyz"}


def test_callback_error_and_missing_params(spotify):
    client, _ = spotify
    r = client.get("/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert _query(r) == {"auth_error": "access_denied"}
    r = client.get("/callback", params={"code": "abc"}, follow_redirects=False)
    assert _query(r) == {"auth_error": "missing_params"}


def test_exchange(spotify, accounts, clock):
    client, _ = spotify
    r = client.post("/api/token/exchange", json=EXCHANGE, headers={"Origin": "http://localhost:3000"})
    assert r.status_code == 200
    body = r.json()
    assert body["accessToken"] == "BQD-access"
    assert body["refreshToken"] == "AQC-refresh"
    assert body["scope"] == "streaming user-read-email"
    assert body["expiresAt"].endswith("Z")
    assert accounts.requests[-1]["code_verifier"] == "v" * 64
    assert "spotify-secret" not in r.text


@pytest.mark.parametrize("origin", ["http://localhost:3000", "http://127.0.0.1:3000", "http://192.168.1.20:3000"])
def test_own_origins_allowed(spotify, origin):
    client, _ = spotify
    r = client.post("/api/token/refresh", json={"refreshToken": "rt"}, headers={"Origin": origin})
    assert r.status_code == 200


@pytest.mark.parametrize("path", ["/api/token/exchange", "/api/token/refresh"])
def test_foreign_origin_forbidden(spotify, accounts, path):
    client, _ = spotify
    r = client.post(path, json=EXCHANGE, headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.json() == {"error": "Forbidden"}
    assert accounts.requests == []


def test_no_origin_header_allowed(spotify):
    client, _ = spotify
    assert client.post("/api/token/refresh", json={"refreshToken": "rt"}).status_code == 200


def test_unconfigured_is_401(make_client, accounts):
    client, _ = make_client("spotify", transport=httpx.MockTransport(accounts))
    r = client.post("/api/token/exchange", json=EXCHANGE)
    assert r.status_code == 401
    assert accounts.requests == []


def test_missing_fields_are_400(spotify):
    client, _ = spotify
    r = client.post("/api/token/exchange", json={"code": "c"})
    assert r.status_code == 400
    assert r.json() == {"error": "Required: code, codeVerifier, redirectUri"}
    r = client.post("/api/token/refresh", json={})
    assert r.json() == {"error": "Required: refreshToken"}


def test_vendor_rejection_is_500(spotify, accounts):
    client, _ = spotify
    accounts.status = 400
    accounts.body = {"error": "invalid_grant", "error_description": "Invalid authorization code"}
    r = client.post("/api/token/exchange", json=EXCHANGE)
    assert r.status_code == 500
    assert r.json() == {"error": "Invalid authorization code"}


def test_refresh_keeps_refresh_token_when_not_rotated(spotify, accounts):
    client, _ = spotify
    accounts.body = {"access_token": "BQD-2", "expires_in": 3600}
    body = client.post("/api/token/refresh", json={"refreshToken": "AQC-old"}).json()
    assert body["accessToken"] == "BQD-2"
    assert body["refreshToken"] == "AQC-old"


def test_other_ports_use_their_own_origins(make_client, accounts):
    client, _ = make_client("spotify", transport=httpx.MockTransport(accounts), port=4000)
    client.post("/api/credentials", json=SPOTIFY)
    headers = {"Origin": "http://localhost:3000"}
    assert client.post("/api/token/refresh", json={"refreshToken": "rt"}, headers=headers).status_code == 403

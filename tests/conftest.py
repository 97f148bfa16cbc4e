"""
Goal: Shared fixtures. A throwaway P-256 key, a clock we can move by hand,
and a per-vendor TestClient wired to a fresh server state.
"""

from typing import Callable, Optional, Tuple

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from tunebridge.api.state import ServerState, build_state
from tunebridge.main import create_app
from tunebridge.models.schemas import AppleCredentials

T0 = 1_700_000_000.0
LAN_IP = "192.168.1.20"


class FakeClock:
    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def pem(ec_key) -> str:
    return ec_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def apple_creds(pem) -> AppleCredentials:
    return AppleCredentials(teamId="TEAM123456", keyId="KEY7654321", privateKey=pem)


@pytest.fixture
def make_client(clock) -> Callable[..., Tuple[TestClient, ServerState]]:
    def _make(
        vendor: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        port: int = 3000,
    ) -> Tuple[TestClient, ServerState]:
        state = build_state(vendor, clock=clock, oauth_transport=transport, port=port, local_ip=LAN_IP)
        return TestClient(create_app(state=state)), state

    return _make

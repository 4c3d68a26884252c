import base64
import json
import time

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from fastapi.testclient import TestClient
from jwcrypto import jwk

from qrauth.main import app
from qrauth.routes.deps import get_keys, get_store
from qrauth.services.auth_service import AuthService
from qrauth.services.keys import KeyDirectory
from qrauth.services.sessions import SessionStore

TTL_SECONDS = 300
RETENTION_SECONDS = 600


class FakeClock:
    """Manually advanced clock shared by the store and the poller under test."""

    def __init__(self, start: float | None = None):
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign_challenge(key: jwk.JWK, challenge: str) -> str:
    """Signs the raw challenge the way the mobile app does (RS256, base64)."""
    priv_pem = key.export_to_pem(private_key=True, password=None)
    priv_key_obj = load_pem_private_key(priv_pem, password=None)
    signature = priv_key_obj.sign(challenge.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("utf-8")


@pytest.fixture(scope="session")
def device_key():
    """RSA key pair held by alice's phone"""
    return jwk.JWK.generate(kty="RSA", size=2048, alg="RS256", use="sig")


@pytest.fixture(scope="session")
def attacker_key():
    """Key pair that was never registered for anyone"""
    return jwk.JWK.generate(kty="RSA", size=2048, alg="RS256", use="sig")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl_seconds=TTL_SECONDS, retention_seconds=RETENTION_SECONDS, clock=clock)


@pytest.fixture
def keys(device_key):
    directory = KeyDirectory()
    directory.register("usr_1", device_key.export_public())
    return directory


@pytest.fixture
def service(store, keys):
    return AuthService(store, keys)


@pytest.fixture
def client(store, keys):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_keys] = lambda: keys
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def signed(device_key):
    """Returns a signer bound to the registered device key"""
    return lambda challenge: sign_challenge(device_key, challenge)


@pytest.fixture
def public_jwk(device_key):
    return json.loads(device_key.export_public())

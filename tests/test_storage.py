"""
Client-side persistence: the cookie and the local cache move together.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from qrauth.client.storage import (
    TOKEN_EXPIRY_STORAGE_KEY,
    TOKEN_STORAGE_KEY,
    USER_ID_STORAGE_KEY,
    USERNAME_STORAGE_KEY,
    CookieSync,
    LocalSessionCache,
    SessionPersistence,
)
from qrauth.core.config import settings
from qrauth.core.errors import NetworkError

API = "http://testserver"


@pytest.fixture
def cache(tmp_path):
    return LocalSessionCache(tmp_path / "session.json")


@pytest.fixture
def persistence(client, cache):
    return SessionPersistence(cache, CookieSync(API, http=client))


class Unreachable:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError("refused")


def test_persist_writes_cookie_and_cache(client, cache, persistence):
    persistence.persist("tok-1", "usr_1", "alice")

    data = json.loads(cache.path.read_text())
    assert data[TOKEN_STORAGE_KEY] == "tok-1"
    assert data[USER_ID_STORAGE_KEY] == "usr_1"
    assert data[USERNAME_STORAGE_KEY] == "alice"
    assert data[TOKEN_EXPIRY_STORAGE_KEY]
    assert client.cookies.get(settings.SESSION_COOKIE_NAME) == "tok-1"
    assert persistence.is_authenticated()


def test_cache_file_is_private(cache, persistence):
    persistence.persist("tok-1", "usr_1", "alice")
    assert cache.path.stat().st_mode & 0o777 == 0o600


def test_cookie_failure_leaves_cache_empty(cache):
    persistence = SessionPersistence(cache, CookieSync(API, http=Unreachable()))

    with pytest.raises(NetworkError):
        persistence.persist("tok-1", "usr_1", "alice")
    assert persistence.get_session() is None
    assert not cache.path.exists()


def test_cookie_http_error_is_network_error(client, cache):
    # Missing token makes the endpoint answer 400
    with pytest.raises(NetworkError):
        CookieSync(API, http=client)._send("POST", json={})


def test_clear_removes_both(client, persistence):
    persistence.persist("tok-1", "usr_1", "alice")
    persistence.clear()

    assert persistence.get_session() is None
    assert not persistence.is_authenticated()
    assert client.cookies.get(settings.SESSION_COOKIE_NAME) is None


def test_clear_drops_cache_even_if_cookie_call_fails(cache):
    persistence = SessionPersistence(cache, CookieSync(API, http=Unreachable()))
    cache.path.write_text(json.dumps({TOKEN_STORAGE_KEY: "t", USER_ID_STORAGE_KEY: "u", USERNAME_STORAGE_KEY: "n"}))

    with pytest.raises(NetworkError):
        persistence.clear()
    assert not cache.path.exists()


def test_expired_cache_is_not_authenticated(cache, persistence):
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    persistence.persist("tok-1", "usr_1", "alice", expires_at=past)

    assert not persistence.is_authenticated()
    # The stale copy is dropped on the check
    assert not cache.path.exists()


def test_incomplete_cache_reads_as_signed_out(cache):
    cache.path.write_text(json.dumps({TOKEN_STORAGE_KEY: "t", USER_ID_STORAGE_KEY: "u"}))
    assert cache.load() is None


def test_corrupt_cache_reads_as_signed_out(cache):
    cache.path.write_text("{not json")
    assert cache.load() is None


def test_missing_expiry_defaults_to_a_day(cache):
    cache.path.write_text(json.dumps({TOKEN_STORAGE_KEY: "t", USER_ID_STORAGE_KEY: "u", USERNAME_STORAGE_KEY: "n"}))

    session = cache.load()
    remaining = session.expires_at - datetime.now(timezone.utc)
    assert timedelta(hours=23) < remaining <= timedelta(days=1)


def test_cache_write_failure_removes_cookie(client, tmp_path):
    class ReadOnlyCache(LocalSessionCache):
        def save(self, session):
            raise PermissionError(13, "Permission denied", str(self.path))

    persistence = SessionPersistence(ReadOnlyCache(tmp_path / "session.json"), CookieSync(API, http=client))

    with pytest.raises(OSError):
        persistence.persist("tok-1", "usr_1", "alice")
    assert client.cookies.get(settings.SESSION_COOKIE_NAME) is None
    assert persistence.get_session() is None

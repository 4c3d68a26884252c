# Client-side session persistence. The HTTP-only cookie is what the
# server trusts; the local cache only serves client-side checks.
# Both are written and cleared together through SessionPersistence.

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import requests

from qrauth.core.errors import NetworkError

logger = logging.getLogger(__name__)

TOKEN_STORAGE_KEY = "tana_session_token"
USER_ID_STORAGE_KEY = "tana_user_id"
USERNAME_STORAGE_KEY = "tana_username"
TOKEN_EXPIRY_STORAGE_KEY = "tana_token_expiry"

DEFAULT_CACHE_PATH = Path.home() / ".qrauth" / "session.json"
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)


@dataclass(frozen=True)
class StoredSession:
    token: str
    user_id: str
    username: str
    expires_at: datetime


class LocalSessionCache:
    """JSON file standing in for browser localStorage."""

    def __init__(self, path: str | Path = DEFAULT_CACHE_PATH):
        self.path = Path(path)

    def save(self, session: StoredSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            TOKEN_STORAGE_KEY: session.token,
            USER_ID_STORAGE_KEY: session.user_id,
            USERNAME_STORAGE_KEY: session.username,
            TOKEN_EXPIRY_STORAGE_KEY: session.expires_at.isoformat(),
        }
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.chmod(tmp, 0o600)
        tmp.replace(self.path)

    def load(self) -> StoredSession | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable session cache at {self.path}")
            return None

        token = data.get(TOKEN_STORAGE_KEY)
        user_id = data.get(USER_ID_STORAGE_KEY)
        username = data.get(USERNAME_STORAGE_KEY)
        if not token or not user_id or not username:
            return None

        expiry = data.get(TOKEN_EXPIRY_STORAGE_KEY)
        if expiry:
            expires_at = datetime.fromisoformat(expiry)
        else:
            expires_at = datetime.now(timezone.utc) + timedelta(days=1)
        return StoredSession(token=token, user_id=user_id, username=username, expires_at=expires_at)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class CookieSync:
    """Mirrors the token into the HTTP-only cookie via the same-origin endpoint."""

    def __init__(self, web_url: str, http: requests.Session | None = None, timeout: float = 5.0):
        self.url = f"{web_url.rstrip('/')}/api/auth/session"
        self.http = http or requests.Session()
        self.timeout = timeout

    def _send(self, method: str, **kwargs) -> None:
        try:
            resp = self.http.request(method, self.url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"Cookie sync failed: {e}") from e
        if resp.status_code >= 400:
            raise NetworkError(f"Cookie sync failed with HTTP {resp.status_code}")

    def save(self, session: StoredSession) -> None:
        self._send("POST", json={"sessionToken": session.token, "expiresAt": session.expires_at.isoformat()})

    def clear(self) -> None:
        self._send("DELETE")


class SessionPersistence:
    def __init__(self, cache: LocalSessionCache, cookie: CookieSync):
        self.cache = cache
        self.cookie = cookie

    def persist(self, token: str, user_id: str, username: str, expires_at: datetime | None = None) -> StoredSession:
        """
        Writes the cookie first; the local cache is only written once the
        server-trusted copy exists. Raises NetworkError if the cookie sync fails
        and OSError if the cache cannot be written, after removing the cookie again.
        """
        if expires_at is None:
            expires_at = datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
        session = StoredSession(token=token, user_id=user_id, username=username, expires_at=expires_at)
        self.cookie.save(session)
        try:
            self.cache.save(session)
        except OSError:
            # Keep the sinks in step: no cookie without the local copy
            try:
                self.cookie.clear()
            except NetworkError as e:
                logger.error(f"Could not roll back session cookie: {e}")
            raise
        logger.info(f"Session persisted for user={username}")
        return session

    def clear(self) -> None:
        # Local copy goes first so a failed cookie call never leaves it behind
        self.cache.clear()
        self.cookie.clear()
        logger.info("Session cleared")

    def get_session(self) -> StoredSession | None:
        return self.cache.load()

    def is_authenticated(self) -> bool:
        """
        Client-side check only; the server relies on the cookie.
        """
        session = self.cache.load()
        if session is None:
            return False
        expires_at = session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at < datetime.now(timezone.utc):
            self.cache.clear()
            return False
        return True

# Process-wide collaborators, each built once on first use.
# Tests swap them through app.dependency_overrides.

from functools import lru_cache

from fastapi import Depends

from qrauth.core.config import settings
from qrauth.services.auth_service import AuthService
from qrauth.services.keys import KeyDirectory
from qrauth.services.sessions import SessionStore


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
    return SessionStore(
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        retention_seconds=settings.SESSION_RETENTION_SECONDS,
    )


@lru_cache(maxsize=1)
def get_keys() -> KeyDirectory:
    if settings.DEVICE_KEYS_FILE:
        return KeyDirectory.from_file(settings.DEVICE_KEYS_FILE)
    return KeyDirectory()


def get_auth_service(
    store: SessionStore = Depends(get_store),
    keys: KeyDirectory = Depends(get_keys),
) -> AuthService:
    return AuthService(store, keys)

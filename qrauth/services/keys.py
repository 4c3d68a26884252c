# Public keys of approving devices, keyed by user identity.

import json
import logging
import threading
from pathlib import Path

from qrauth.services.crypto_utils import CryptoUtils

logger = logging.getLogger(__name__)


class KeyDirectory:
    def __init__(self, keys: dict[str, dict] | None = None):
        self._keys: dict[str, dict] = dict(keys or {})
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str) -> "KeyDirectory":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        keys = {user_id: json.loads(k) if isinstance(k, str) else k for user_id, k in raw.items()}
        logger.info(f"Loaded {len(keys)} device keys from {path}")
        return cls(keys)

    def register(self, user_id: str, public_jwk: dict | str) -> None:
        if isinstance(public_jwk, str):
            public_jwk = json.loads(public_jwk)
        with self._lock:
            self._keys[user_id] = public_jwk
        logger.info(f"Registered device key for user_id={user_id}")

    def get(self, user_id: str) -> dict | None:
        with self._lock:
            return self._keys.get(user_id)

    def verify(self, identity: str, challenge: str, signature: str) -> bool:
        public_jwk = self.get(identity)
        if public_jwk is None:
            logger.warning(f"No device key registered for user_id={identity}")
            return False
        return CryptoUtils.verify_raw_signature(public_jwk, challenge, signature)

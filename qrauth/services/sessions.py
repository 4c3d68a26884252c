# In-memory QR login session management (creation, transitions,
# lazy expiry, and purge after the retention window).

import dataclasses
import logging
import secrets
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from qrauth.core.errors import InvalidTransition, SessionExpired, SessionNotFound, StoreUnavailable
from qrauth.models import AuthSession, SessionSnapshot, SessionStatus, can_transition

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Sessions keyed by ID, each guarded by its own lock.

    Every mutation is a compare-and-swap from an expected prior status taken
    under the session's lock, and every access first applies lazy expiry.
    Callers only ever receive copies.
    """

    def __init__(self, ttl_seconds: int, retention_seconds: int = 600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()
        self._closed = False

    def _now(self) -> float:
        return self._clock()

    def _check_open(self) -> None:
        if self._closed:
            raise StoreUnavailable("Session store is closed")

    def _lock_for(self, s_id: str) -> "threading.Lock | None":
        with self._table_lock:
            return self._locks.get(s_id)

    @contextmanager
    def _locked(self, s_id: str) -> Iterator[AuthSession]:
        self._check_open()
        lock = self._lock_for(s_id)
        if lock is None:
            raise SessionNotFound(session_id=s_id)
        with lock:
            # Re-read under the lock, the entry may have been purged meanwhile
            s = self._sessions.get(s_id)
            if s is None:
                raise SessionNotFound(session_id=s_id)
            self._expire_if_needed(s)
            yield s

    def _expire_if_needed(self, s: AuthSession) -> bool:
        # Caller holds the session lock
        if s.status.is_terminal or self._now() <= s.expires_at:
            return False
        s.status = SessionStatus.EXPIRED
        s.resolved_at = s.expires_at
        logger.info(f"Session expired: session_id={s.session_id}")
        return True

    def create(self, app_name: str, return_url: str) -> AuthSession:
        self._check_open()
        now = self._now()
        challenge = secrets.token_urlsafe(32)
        with self._table_lock:
            s_id = secrets.token_urlsafe(24)
            while s_id in self._locks:
                s_id = secrets.token_urlsafe(24)
            s = AuthSession(
                session_id=s_id,
                challenge=challenge,
                app_name=app_name,
                return_url=return_url,
                created_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._locks[s_id] = threading.Lock()
            self._sessions[s_id] = s
        return dataclasses.replace(s)

    def get(self, s_id: str) -> AuthSession | None:
        try:
            with self._locked(s_id) as s:
                return dataclasses.replace(s)
        except SessionNotFound:
            return None

    def snapshot(self, s_id: str) -> SessionSnapshot:
        with self._locked(s_id) as s:
            return s.snapshot()

    def transition(
        self,
        s_id: str,
        expected: Iterable[SessionStatus],
        target: SessionStatus,
        apply: Callable[[AuthSession], None] | None = None,
    ) -> AuthSession:
        """
        Moves the session to `target` only if its current status is one of
        `expected`. `apply` runs under the same lock, so fields it sets become
        visible together with the new status.
        """
        expected = frozenset(expected)
        with self._locked(s_id) as s:
            if s.status is SessionStatus.EXPIRED and target is not SessionStatus.EXPIRED:
                raise SessionExpired("Session expired", session_id=s_id)
            if s.status not in expected or not can_transition(s.status, target):
                raise InvalidTransition(
                    f"Cannot move from {s.status.value} to {target.value}", session_id=s_id
                )
            now = self._now()
            if apply is not None:
                apply(s)
            s.status = target
            if target is SessionStatus.SCANNED:
                s.scanned_at = now
            elif target.is_terminal:
                s.resolved_at = now
                if target is SessionStatus.APPROVED:
                    s.approved_at = now
            return dataclasses.replace(s)

    def purge(self) -> int:
        """Evicts sessions resolved longer ago than the retention window."""
        self._check_open()
        with self._table_lock:
            candidates = list(self._locks.items())

        purged = 0
        for s_id, lock in candidates:
            with lock:
                s = self._sessions.get(s_id)
                if s is None:
                    continue
                self._expire_if_needed(s)
                if not s.status.is_terminal or s.resolved_at is None:
                    continue
                if self._now() - s.resolved_at < self.retention_seconds:
                    continue
                with self._table_lock:
                    self._sessions.pop(s_id, None)
                    self._locks.pop(s_id, None)
                purged += 1
        return purged

    def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._sessions)

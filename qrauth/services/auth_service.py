import asyncio
import logging
import time
from typing import AsyncIterator

from qrauth.core.errors import InvalidRequest, InvalidTransition, SessionExpired, SessionNotFound, SignatureInvalid
from qrauth.core.security import create_session_token
from qrauth.models import AuthSession, Decision, IssuedSession, SessionSnapshot, SessionStatus
from qrauth.services.keys import KeyDirectory
from qrauth.services.logger import log_event
from qrauth.services.qr_service import QRService
from qrauth.services.sessions import SessionStore

"""AuthService: Handles the core authentication logic for the QR code login flow"""


logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, store: SessionStore, keys: KeyDirectory):
        self.store = store
        self.keys = keys

    def create_session(self, app_name: str, return_url: str, server: str) -> IssuedSession:
        """
        Creates a new waiting session.
        Returns what the browser needs to render the QR code (session_id, challenge, qr_payload).
        """
        if not app_name or not app_name.strip():
            raise InvalidRequest("appName must not be empty")
        if not return_url or not return_url.strip():
            raise InvalidRequest("returnUrl must not be empty")

        s = self.store.create(app_name, return_url)
        qr_payload = QRService.build_payload(s.session_id, s.challenge, server)

        logger.info(f"Session created: session_id={s.session_id}, app={app_name}")
        log_event("create", s.session_id, "waiting")

        return IssuedSession(
            session_id=s.session_id,
            challenge=s.challenge,
            qr_payload=qr_payload,
            created_at=s.created_at,
            expires_at=s.expires_at,
        )

    def _load_for_device(self, session_id: str) -> AuthSession:
        s = self.store.get(session_id)
        if s is None:
            logger.warning(f"Device request failed: session_id={session_id} not found")
            raise SessionNotFound(session_id=session_id)
        if s.status is SessionStatus.EXPIRED:
            logger.info(f"Device request failed: session_id={session_id} expired")
            log_event("device", session_id, "expired")
            raise SessionExpired("Session expired", session_id=session_id)
        return s

    def _verify(self, s: AuthSession, user_id: str, signed_challenge: str) -> None:
        if not self.keys.verify(user_id, s.challenge, signed_challenge):
            logger.warning(f"Signature verification failed: session_id={s.session_id}, user={user_id}")
            log_event("signature", s.session_id, "invalid")
            raise SignatureInvalid("Challenge signature is invalid", session_id=s.session_id)

    def scan(self, session_id: str, signed_challenge: str, user_id: str) -> SessionSnapshot:
        """
        The device reports that the QR code was opened, before the user decides.
        """
        s = self._load_for_device(session_id)
        self._verify(s, user_id, signed_challenge)

        if s.status is SessionStatus.SCANNED:
            return s.snapshot()

        try:
            updated = self.store.transition(session_id, expected=(SessionStatus.WAITING,), target=SessionStatus.SCANNED)
        except InvalidTransition:
            current = self.store.get(session_id)
            if current is not None and current.status is SessionStatus.SCANNED:
                return current.snapshot()
            logger.warning(f"Scan rejected: session_id={session_id} already resolved")
            raise

        logger.info(f"Session scanned: session_id={session_id}")
        log_event("scan", session_id, "scanned")
        return updated.snapshot()

    def approve(
        self,
        session_id: str,
        signed_challenge: str,
        decision: Decision,
        user_id: str,
        username: str,
    ) -> SessionSnapshot:
        """
        Applies the device's signed decision. On approval the session token is
        minted and bound together with the identity in one transition.
        """
        started = time.monotonic()
        s = self._load_for_device(session_id)
        self._verify(s, user_id, signed_challenge)

        target = decision.target

        def bind(session: AuthSession) -> None:
            session.user_id = user_id
            session.username = username
            if target is SessionStatus.APPROVED:
                session.session_token = create_session_token(
                    user_id, session.session_id, extra={"username": username}
                )

        try:
            updated = self.store.transition(
                session_id,
                expected=(SessionStatus.WAITING, SessionStatus.SCANNED),
                target=target,
                apply=bind,
            )
        except InvalidTransition:
            # Terminal states never change, so this re-read is stable
            current = self.store.get(session_id)
            if current is not None and current.status is target and current.user_id == user_id:
                logger.info(f"Repeated {decision.value}: session_id={session_id}")
                return current.snapshot()
            logger.warning(f"Invalid {decision.value}: session_id={session_id}, user={user_id}")
            log_event(decision.value, session_id, "invalid_transition")
            raise

        latency_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Session {target.value}: session_id={session_id}, user={user_id}")
        log_event(decision.value, session_id, target.value, latency_ms)
        return updated.snapshot()

    def get_status(self, session_id: str) -> SessionSnapshot:
        return self.store.snapshot(session_id)

    async def watch(self, session_id: str, interval: float) -> AsyncIterator[tuple[str, SessionSnapshot]]:
        """
        Yields ("status_update", snapshot) now and on every status change.
        Terminal states are yielded with their own event type and end the stream.
        """
        last: SessionStatus | None = None
        while True:
            try:
                snap = self.store.snapshot(session_id)
            except SessionNotFound:
                return
            if snap.status is not last:
                last = snap.status
                if snap.status.is_terminal:
                    yield snap.status.value, snap
                    return
                yield "status_update", snap
            await asyncio.sleep(interval)

# Requesting-client side of the QR login: creates a session, polls its
# status until a terminal state, persists the token, redirects once.

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import requests

from qrauth.client.storage import DEFAULT_TOKEN_LIFETIME, SessionPersistence
from qrauth.core.errors import NetworkError, SessionExpired, SessionNotFound
from qrauth.models import SessionStatus

logger = logging.getLogger(__name__)

# Messages shown to the user, never the raw error
STATUS_MESSAGES = {
    SessionStatus.WAITING: "Scan the QR code with your mobile app.",
    SessionStatus.SCANNED: "QR code scanned. Approve the login on your phone.",
    SessionStatus.APPROVED: "Login approved. Redirecting...",
    SessionStatus.REJECTED: "Login rejected on your phone. Try again.",
    SessionStatus.EXPIRED: "This code has expired. Generate a new code.",
}
ERROR_MESSAGE = "Could not reach the login server. Retry."

_RANK = {SessionStatus.WAITING: 0, SessionStatus.SCANNED: 1}


def _rank(status: SessionStatus) -> int:
    return _RANK.get(status, 2)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class CreatedSession:
    session_id: str
    qr_data: str
    expires_in: int


class IdentityClient:
    """Thin HTTP client for the identity server; every call is time-bounded."""

    def __init__(self, api_url: str, http: requests.Session | None = None, timeout: float = 5.0):
        self.api_url = api_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    def _call(self, method: str, path: str, **kwargs):
        try:
            resp = self.http.request(method, f"{self.api_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e
        if resp.status_code == 404:
            raise SessionNotFound(path)
        if resp.status_code == 410:
            raise SessionExpired(path)
        if resp.status_code >= 400:
            raise NetworkError(f"HTTP {resp.status_code} from {path}")
        try:
            return resp.json()
        except ValueError as e:
            # Proxies and captive portals answer 200 with HTML
            raise NetworkError(f"Unreadable response from {path}") from e

    def create_session(self, app_name: str, return_url: str) -> CreatedSession:
        data = self._call("POST", "/auth/session/create", json={"appName": app_name, "returnUrl": return_url})
        return CreatedSession(session_id=data["sessionId"], qr_data=data["qrData"], expires_in=int(data["expiresIn"]))

    def get_status(self, session_id: str) -> dict:
        return self._call("GET", f"/auth/session/{session_id}")


class LoginFlow:
    """
    One login attempt bound to one session ID. Never resumed: retrying means
    a new flow with a new session.
    """

    def __init__(
        self,
        client: IdentityClient,
        persistence: SessionPersistence,
        created: CreatedSession,
        return_url: str,
        interval: float = 1.0,
        on_status: Callable[[SessionStatus, str], None] | None = None,
        on_redirect: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.persistence = persistence
        self.session_id = created.session_id
        self.qr_data = created.qr_data
        self.return_url = return_url
        self.interval = interval
        self.on_status = on_status
        self.on_redirect = on_redirect
        self._clock = clock
        self.ttl_seconds = created.expires_in
        self.deadline = clock() + created.expires_in

        self.status = SessionStatus.WAITING
        self.message = STATUS_MESSAGES[SessionStatus.WAITING]
        self.redirect_count = 0
        self._lock = threading.Lock()
        self._terminal_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._worker: threading.Thread | None = None
        self._timer: threading.Timer | None = None

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _advance(self, expected: SessionStatus, new: SessionStatus) -> bool:
        """
        Compare-and-swap on the last observed status. Refuses to move
        backwards, after a terminal state, or once the flow is cancelled.
        An approved flow is only marked done by _complete, after its redirect.
        """
        with self._lock:
            if self._cancelled.is_set() or self.status is not expected or self.status.is_terminal:
                return False
            if _rank(new) <= _rank(expected):
                return False
            self.status = new
            self.message = STATUS_MESSAGES[new]
            if new.is_terminal and new is not SessionStatus.APPROVED:
                self._done.set()
        if new.is_terminal and self._timer is not None:
            self._timer.cancel()
        logger.info(f"Login flow {self.session_id}: {expected.value} -> {new.value}")
        if self.on_status:
            self.on_status(new, self.message)
        return True

    def _settle(self, expected: SessionStatus, new: SessionStatus) -> bool:
        # Terminal outcomes wait for an approval that is being persisted
        with self._terminal_lock:
            return self._advance(expected, new)

    def _redirect_once(self) -> None:
        # Only reached after the approval committed, so a cancel no longer applies
        with self._lock:
            if self.redirect_count:
                return
            self.redirect_count = 1
        logger.info(f"Redirecting to {self.return_url}")
        if self.on_redirect:
            self.on_redirect(self.return_url)

    def _expire_locally(self) -> None:
        # Local TTL fallback, independent of the server and of slow requests
        with self._terminal_lock:
            observed = self.status
            if not observed.is_terminal and self._advance(observed, SessionStatus.EXPIRED):
                logger.info(f"Login flow {self.session_id} expired on the local clock")

    def poll_once(self) -> SessionStatus:
        if self.finished or self.cancelled:
            return self.status

        observed = self.status
        if self._clock() >= self.deadline:
            self._expire_locally()
            return self.status

        try:
            data = self.client.get_status(self.session_id)
        except (SessionNotFound, SessionExpired):
            self._settle(observed, SessionStatus.EXPIRED)
            return self.status
        except NetworkError as e:
            logger.warning(f"Status poll failed for {self.session_id}, retrying: {e}")
            return self.status

        raw = data.get("status") if isinstance(data, dict) else None
        try:
            new = SessionStatus(raw)
        except ValueError:
            logger.warning(f"Unknown status from server for {self.session_id}: {raw}")
            return self.status

        if new is SessionStatus.APPROVED:
            self._complete(data)
        elif new.is_terminal:
            self._settle(observed, new)
        elif new is not observed:
            self._advance(observed, new)
        return self.status

    def _complete(self, data: dict) -> None:
        token, user_id, username = data.get("sessionToken"), data.get("userId"), data.get("username")
        if not token or not user_id or not username:
            logger.error(f"Approved without session data for {self.session_id}")
            return

        approved_at = _parse_time(data.get("approvedAt"))
        expires_at = approved_at + DEFAULT_TOKEN_LIFETIME if approved_at else None
        with self._terminal_lock:
            if self._cancelled.is_set() or self.status.is_terminal:
                return
            try:
                self.persistence.persist(token, user_id, username, expires_at)
            except (NetworkError, OSError) as e:
                # Approval is final on the server, so the next tick can retry
                logger.warning(f"Persisting session for {self.session_id} failed, retrying: {e}")
                return

            if not self._advance(self.status, SessionStatus.APPROVED):
                return
            try:
                self._redirect_once()
            finally:
                self._done.set()

    def _run(self) -> None:
        while not self._cancelled.is_set() and not self._done.is_set():
            self.poll_once()
            if self._cancelled.wait(self.interval):
                break

    def start(self) -> "LoginFlow":
        remaining = max(0.0, self.deadline - self._clock())
        self._timer = threading.Timer(remaining, self._expire_locally)
        self._timer.daemon = True
        self._timer.start()
        self._worker = threading.Thread(target=self._run, name=f"qr-poll-{self.session_id[:8]}", daemon=True)
        self._worker.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()
        if self._timer is not None:
            self._timer.cancel()
        # Callbacks may cancel from the worker or the TTL timer itself
        if self._worker is not None and threading.current_thread() not in (self._worker, self._timer):
            self._worker.join()
        logger.info(f"Login flow {self.session_id} cancelled")

    def wait(self, timeout: float | None = None) -> SessionStatus:
        self._done.wait(timeout)
        return self.status


class QRLoginPoller:
    def __init__(
        self,
        api_url: str,
        persistence: SessionPersistence,
        http: requests.Session | None = None,
        interval: float = 1.0,
        request_timeout: float = 5.0,
        on_status: Callable[[SessionStatus, str], None] | None = None,
        on_redirect: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = IdentityClient(api_url, http=http, timeout=request_timeout)
        self.persistence = persistence
        self.interval = interval
        self.on_status = on_status
        self.on_redirect = on_redirect
        self._clock = clock
        self.flow: LoginFlow | None = None
        self._last_request: tuple[str, str] | None = None

    def create_flow(self, app_name: str, return_url: str) -> LoginFlow:
        """Creates a fresh session and its flow without starting the background poll."""
        if self.flow is not None:
            self.flow.cancel()
        created = self.client.create_session(app_name, return_url)
        self._last_request = (app_name, return_url)
        self.flow = LoginFlow(
            self.client,
            self.persistence,
            created,
            return_url,
            interval=self.interval,
            on_status=self.on_status,
            on_redirect=self.on_redirect,
            clock=self._clock,
        )
        logger.info(f"Login flow created: session_id={created.session_id}")
        return self.flow

    def start(self, app_name: str, return_url: str) -> LoginFlow:
        return self.create_flow(app_name, return_url).start()

    def retry(self) -> LoginFlow:
        if self._last_request is None:
            raise RuntimeError("No login flow to retry")
        return self.start(*self._last_request)

    def cancel(self) -> None:
        if self.flow is not None:
            self.flow.cancel()

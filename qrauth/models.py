# Authentication session record and its status state machine.

from dataclasses import dataclass
from enum import Enum


class SessionStatus(str, Enum):
    WAITING = "waiting"
    SCANNED = "scanned"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SessionStatus.APPROVED, SessionStatus.REJECTED, SessionStatus.EXPIRED})

# The device may skip the scan report and decide straight from WAITING
TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.WAITING: frozenset(
        {SessionStatus.SCANNED, SessionStatus.APPROVED, SessionStatus.REJECTED, SessionStatus.EXPIRED}
    ),
    SessionStatus.SCANNED: frozenset({SessionStatus.APPROVED, SessionStatus.REJECTED, SessionStatus.EXPIRED}),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target(self) -> SessionStatus:
        return SessionStatus.APPROVED if self is Decision.APPROVE else SessionStatus.REJECTED


@dataclass
class AuthSession:
    session_id: str
    challenge: str
    app_name: str
    return_url: str
    created_at: float
    expires_at: float
    status: SessionStatus = SessionStatus.WAITING
    scanned_at: float | None = None
    approved_at: float | None = None
    resolved_at: float | None = None
    session_token: str | None = None
    user_id: str | None = None
    username: str | None = None

    def snapshot(self) -> "SessionSnapshot":
        approved = self.status is SessionStatus.APPROVED
        return SessionSnapshot(
            session_id=self.session_id,
            status=self.status,
            expires_at=self.expires_at,
            session_token=self.session_token if approved else None,
            user_id=self.user_id if approved else None,
            username=self.username if approved else None,
            approved_at=self.approved_at if approved else None,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Browser-safe view of a session. Never carries the challenge."""

    session_id: str
    status: SessionStatus
    expires_at: float
    session_token: str | None = None
    user_id: str | None = None
    username: str | None = None
    approved_at: float | None = None


@dataclass(frozen=True)
class IssuedSession:
    session_id: str
    challenge: str
    qr_payload: str
    created_at: float
    expires_at: float
    status: SessionStatus = SessionStatus.WAITING

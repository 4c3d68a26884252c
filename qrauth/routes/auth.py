# Authentication-related routes: QR session creation, device scan
# and approval, status polling, and the pushed status stream.

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from qrauth.core.config import settings
from qrauth.core.errors import AuthError
from qrauth.models import Decision, SessionSnapshot
from qrauth.routes.deps import get_auth_service
from qrauth.services.auth_service import AuthService
from qrauth.services.limiter import limiter
from qrauth.services.qr_service import QRService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionReq(CamelModel):
    app_name: str = Field(min_length=1)
    return_url: str = Field(min_length=1)


class CreateSessionResp(CamelModel):
    session_id: str
    challenge: str
    qr_data: str
    qr_image: str
    expires_in: int
    expires_at: datetime
    status: str


class ScanReq(CamelModel):
    signed_challenge: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class ApproveReq(CamelModel):
    signed_challenge: str = Field(min_length=1)
    decision: Decision
    user_id: str = Field(min_length=1)
    username: str = Field(min_length=1)


class StatusResp(CamelModel):
    session_id: str
    status: str
    expires_at: datetime
    session_token: str | None = None
    user_id: str | None = None
    username: str | None = None
    approved_at: datetime | None = None


def _ts(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _status_resp(snap: SessionSnapshot) -> StatusResp:
    return StatusResp(
        session_id=snap.session_id,
        status=snap.status.value,
        expires_at=_ts(snap.expires_at),
        session_token=snap.session_token,
        user_id=snap.user_id,
        username=snap.username,
        approved_at=_ts(snap.approved_at),
    )


def _http_error(err: AuthError) -> HTTPException:
    return HTTPException(status_code=err.status_code, detail=str(err))


def server_base_url(request: Request) -> str:
    return settings.PUBLIC_BASE_URL.rstrip("/") or str(request.base_url).rstrip("/")


@router.post("/session/create", response_model=CreateSessionResp, response_model_by_alias=True)
def create_session(
    req: CreateSessionReq,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    # Browser starts a login attempt
    limiter.check(request)
    try:
        issued = service.create_session(req.app_name, req.return_url, server_base_url(request))
    except AuthError as e:
        raise _http_error(e)

    return CreateSessionResp(
        session_id=issued.session_id,
        challenge=issued.challenge,
        qr_data=issued.qr_payload,
        qr_image=QRService.create_qr_image(issued.qr_payload),
        expires_in=int(issued.expires_at - issued.created_at),
        expires_at=_ts(issued.expires_at),
        status=issued.status.value,
    )


@router.get(
    "/session/{session_id}",
    response_model=StatusResp,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def session_status(session_id: str, service: AuthService = Depends(get_auth_service)):
    # Browser polls for the outcome
    try:
        return _status_resp(service.get_status(session_id))
    except AuthError as e:
        raise _http_error(e)


@router.get("/session/{session_id}/events")
async def session_events(session_id: str, request: Request, service: AuthService = Depends(get_auth_service)):
    # Pushed alternative to polling, as Server-Sent Events
    try:
        service.get_status(session_id)
    except AuthError as e:
        raise _http_error(e)

    async def stream():
        async for event_type, snap in service.watch(session_id, settings.SSE_INTERVAL_MS / 1000):
            if await request.is_disconnected():
                logger.info(f"SSE client disconnected: session_id={session_id}")
                return
            body = _status_resp(snap).model_dump(mode="json", by_alias=True, exclude_none=True)
            body["type"] = event_type
            yield f"data: {json.dumps(body)}\n\n"

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post(
    "/session/{session_id}/scan",
    response_model=StatusResp,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def scan_session(session_id: str, req: ScanReq, service: AuthService = Depends(get_auth_service)):
    # Device reports that the QR code was opened
    try:
        return _status_resp(service.scan(session_id, req.signed_challenge, req.user_id))
    except AuthError as e:
        raise _http_error(e)


@router.post(
    "/session/{session_id}/approve",
    response_model=StatusResp,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
def approve_session(session_id: str, req: ApproveReq, service: AuthService = Depends(get_auth_service)):
    # Device sends the signed approve/reject decision
    try:
        snap = service.approve(session_id, req.signed_challenge, req.decision, req.user_id, req.username)
    except AuthError as e:
        raise _http_error(e)
    return _status_resp(snap)

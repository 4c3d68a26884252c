# Same-origin browser routes: the HTTP-only session cookie that
# server-rendered pages trust, plus sign-out.

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from qrauth.core.config import settings
from qrauth.core.security import decode_session_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["web"])

DEFAULT_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days


class CookieSyncReq(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_token: str | None = None
    expires_at: datetime | None = None


class CurrentUserResp(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    username: str | None = None
    session_id: str | None = None
    expires_at: datetime


def set_session_cookie(response: Response, token: str, expires_at: datetime | None = None) -> None:
    options = {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "lax",
        "path": "/",
    }
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        # Cookie dates must be rendered in GMT
        options["expires"] = expires_at.astimezone(timezone.utc)
    else:
        options["max_age"] = DEFAULT_COOKIE_MAX_AGE
    response.set_cookie(settings.SESSION_COOKIE_NAME, token, **options)


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.SESSION_COOKIE_NAME,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="lax",
    )


@router.post("/api/auth/session")
def save_session_cookie(req: CookieSyncReq, response: Response):
    if not req.session_token:
        raise HTTPException(status_code=400, detail="Session token is required")
    set_session_cookie(response, req.session_token, req.expires_at)
    return {"success": True}


@router.delete("/api/auth/session")
def delete_session_cookie(response: Response):
    clear_session_cookie(response)
    return {"success": True}


@router.get("/api/auth/me", response_model=CurrentUserResp, response_model_by_alias=True)
def current_user(request: Request):
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not signed in")

    claims = decode_session_token(token)
    if not claims:
        logger.warning("Rejected session cookie with invalid token")
        raise HTTPException(status_code=401, detail="Invalid session")

    return CurrentUserResp(
        user_id=claims["sub"],
        username=claims.get("username"),
        session_id=claims.get("sid"),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )


@router.get("/do/signout")
def signout():
    response = RedirectResponse(url="/", status_code=307)
    clear_session_cookie(response)
    return response

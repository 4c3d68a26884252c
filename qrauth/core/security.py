# Session token minting and verification.
import secrets
import time
import jwt
from qrauth.core.config import settings


def create_session_token(sub: str, session_id: str, extra: dict | None = None, exp_seconds: int | None = None) -> str:
    """
    The jti comes from its own entropy draw, so the token carries nothing
    derivable from the session challenge.
    """
    now = int(time.time())
    if exp_seconds is None:
        exp_seconds = settings.SESSION_TOKEN_TTL_SECONDS
    payload = {
        "iss": settings.SESSION_TOKEN_ISSUER,
        "aud": settings.SESSION_TOKEN_AUDIENCE,
        "iat": now,
        "nbf": now,
        "exp": now + exp_seconds,
        "sub": sub,
        "sid": session_id,
        "jti": secrets.token_urlsafe(32),
    }

    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.SESSION_TOKEN_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            settings.SESSION_TOKEN_SECRET,
            algorithms=["HS256"],
            audience=settings.SESSION_TOKEN_AUDIENCE,
            issuer=settings.SESSION_TOKEN_ISSUER,
        )
    except jwt.PyJWTError:
        return None

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from app.config import Settings

SESSION_TOKEN_TYPE = "session"


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class SessionClaims:
    identity: str
    role: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_session_token(
    identity: str, role: str, settings: Settings, now: datetime | None = None
) -> str:
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    now = now or _utcnow()
    expires_at = now + timedelta(hours=settings.session_token_expire_hours)
    payload = {
        "sub": identity,
        "email": identity,
        "role": role,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str, settings: Settings) -> SessionClaims:
    if not token:
        raise TokenError("Token is missing")
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc
    if payload.get("type") != SESSION_TOKEN_TYPE:
        raise TokenError("Invalid token type")
    identity = payload.get("sub")
    role = payload.get("role")
    if not identity or not role:
        raise TokenError("Token subject is missing")
    return SessionClaims(identity=identity, role=role)

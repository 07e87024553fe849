from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.config import Settings
from app.errors import BadRequest, CodeExpired, Forbidden, InvalidCode, RateLimited, Unavailable
from app.services.allow_list import AllowList, normalize_identity
from app.services.code_store import CodeStore, OneTimeCode
from app.services.email import Notifier
from app.services.rate_limit import RateLimiter
from app.services.tokens import TokenError, create_session_token

LOGGER = logging.getLogger(__name__)

CODE_SENT_MESSAGE = "OTP sent"


@dataclass(frozen=True)
class CodeIssued:
    message: str
    expires_in_seconds: int


@dataclass(frozen=True)
class VerifiedSession:
    token: str
    identity: str
    role: str
    expires_in_seconds: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(length: int = 6) -> str:
    lowest = 10 ** (length - 1)
    return str(lowest + secrets.randbelow(9 * lowest))


def hash_code(code: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


class OtpService:
    """Issues emailed one-time codes and trades them for session tokens.

    A code is stored only as a keyed hash and lives for ``otp_ttl_seconds``.
    Requesting a new code supersedes every earlier one for the identity, and
    any matched verification (successful or expired) removes all of them.
    Both operations are throttled per identity and per client IP.

    The new code replaces the stored ones before the email goes out, so a
    request whose delivery fails still invalidates any earlier code; the user
    has to request again.
    """

    def __init__(
        self,
        store: CodeStore,
        notifier: Notifier,
        allow_list: AllowList,
        limiter: RateLimiter,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._allow_list = allow_list
        self._limiter = limiter
        self._settings = settings
        self._clock = clock
        if not settings.code_hash_secret:
            LOGGER.warning("No OTP_HASH_SECRET or JWT_SECRET configured; OTP hashes are unkeyed")
        if not len(allow_list):
            LOGGER.warning("ADMIN_ALLOWED_EMAILS is empty; nobody will be able to log in")

    def request_code(self, identity: Optional[str], client_ip: Optional[str] = None) -> CodeIssued:
        if not identity or not identity.strip():
            raise BadRequest("Email is required")
        normalized = normalize_identity(identity)
        self._throttle("request-code", normalized, client_ip)

        issued = CodeIssued(
            message=CODE_SENT_MESSAGE,
            expires_in_seconds=self._settings.otp_ttl_seconds,
        )
        if not self._allow_list.contains(normalized):
            LOGGER.warning("OTP requested for non allow-listed identity=%s ip=%s", normalized, client_ip)
            if self._settings.hide_unauthorized_identities:
                return issued
            raise Forbidden()

        now = self._clock()
        code = generate_code(self._settings.otp_length)
        record = OneTimeCode(
            identity=normalized,
            code_hash=hash_code(code, self._settings.code_hash_secret),
            expires_at=now + timedelta(seconds=self._settings.otp_ttl_seconds),
        )
        superseded = self._store.replace(record, now=now)
        LOGGER.info(
            "OTP issued identity=%s expires_at=%s superseded=%s",
            normalized,
            record.expires_at.isoformat(),
            superseded,
        )

        self._notifier.send(normalized, code)
        return issued

    def verify_code(
        self,
        identity: Optional[str],
        code: Optional[str],
        client_ip: Optional[str] = None,
    ) -> VerifiedSession:
        if not identity or not identity.strip() or not code or not code.strip():
            raise BadRequest("Email and code are required")
        normalized = normalize_identity(identity)
        self._throttle("verify-code", normalized, client_ip)

        record = self._store.find_one(
            normalized, hash_code(code.strip(), self._settings.code_hash_secret)
        )
        if record is None:
            LOGGER.info("OTP verification failed identity=%s ip=%s", normalized, client_ip)
            raise InvalidCode()

        now = self._clock()
        if record.expires_at < now:
            self._store.delete_all(normalized)
            LOGGER.info("Expired OTP presented identity=%s", normalized)
            raise CodeExpired()

        role = self._settings.session_role
        try:
            token = create_session_token(normalized, role, self._settings, now=now)
        except TokenError as exc:
            LOGGER.error("Cannot issue session token: %s", exc)
            raise Unavailable("Session token could not be issued") from exc
        self._store.delete_all(normalized)
        LOGGER.info("OTP verified identity=%s role=%s", normalized, role)
        return VerifiedSession(
            token=token,
            identity=normalized,
            role=role,
            expires_in_seconds=self._settings.session_token_expire_hours * 3600,
        )

    def _throttle(self, action: str, identity: str, client_ip: Optional[str]) -> None:
        keys = [f"{action}:identity:{identity}"]
        if client_ip:
            keys.append(f"{action}:ip:{client_ip}")
        blocked = self._limiter.first_blocked(
            keys,
            max_requests=self._settings.rate_limit_max_requests,
            window_seconds=self._settings.rate_limit_window_seconds,
        )
        if blocked is not None:
            LOGGER.warning("Rate limited %s identity=%s ip=%s", action, identity, client_ip)
            raise RateLimited(retry_after=self._limiter.retry_after(blocked))

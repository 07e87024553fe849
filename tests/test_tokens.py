from dataclasses import replace
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.services.tokens import TokenError, create_session_token, decode_session_token


def test_round_trip_claims(settings):
    token = create_session_token("user@example.com", "admin", settings)

    claims = decode_session_token(token, settings)

    assert claims.identity == "user@example.com"
    assert claims.role == "admin"


def test_expired_token_rejected(settings):
    issued = datetime.now(timezone.utc) - timedelta(hours=9)
    token = create_session_token("user@example.com", "admin", settings, now=issued)

    with pytest.raises(TokenError, match="expired"):
        decode_session_token(token, settings)


def test_foreign_signature_rejected(settings):
    token = create_session_token("user@example.com", "admin", settings)
    other = replace(settings, jwt_secret="someone-else")

    with pytest.raises(TokenError, match="Invalid token"):
        decode_session_token(token, other)


def test_wrong_token_type_rejected(settings):
    token = jwt.encode(
        {"sub": "user@example.com", "role": "admin", "type": "refresh"},
        settings.jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(TokenError, match="type"):
        decode_session_token(token, settings)


def test_missing_secret(settings):
    with pytest.raises(TokenError):
        create_session_token("user@example.com", "admin", replace(settings, jwt_secret=""))

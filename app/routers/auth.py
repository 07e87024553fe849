from typing import NoReturn

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from app.config import Settings
from app.errors import (
    AuthError,
    BadRequest,
    DeliveryFailed,
    Forbidden,
    InvalidCode,
    RateLimited,
    Unavailable,
)
from app.schemas.otp import (
    CodeRequest,
    CodeRequestResponse,
    CodeVerifyRequest,
    CodeVerifyResponse,
    SessionUser,
)
from app.services.otp import OtpService
from app.services.tokens import SessionClaims, TokenError, decode_session_token

router = APIRouter(prefix="/auth", tags=["auth"])

_STATUS_BY_ERROR = (
    (BadRequest, status.HTTP_400_BAD_REQUEST),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (InvalidCode, status.HTTP_401_UNAUTHORIZED),
    (RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_otp_service(request: Request) -> OtpService:
    return request.app.state.otp_service


def get_client_ip(request: Request) -> str | None:
    if request.app.state.settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return str(request.client.host)
    return None


def _raise_http(exc: AuthError, server_error_detail: str) -> NoReturn:
    if isinstance(exc, (DeliveryFailed, Unavailable)):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=server_error_detail,
        ) from exc
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(
                status_code=status_code, detail=exc.message, headers=headers
            ) from exc
    raise exc


def get_current_identity(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> SessionClaims:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header",
        )
    try:
        return decode_session_token(token, settings)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


@router.post("/request-otp", response_model=CodeRequestResponse, include_in_schema=False)
@router.post("/request-code", response_model=CodeRequestResponse)
def request_code(
    payload: CodeRequest,
    request: Request,
    service: OtpService = Depends(get_otp_service),
) -> CodeRequestResponse:
    try:
        issued = service.request_code(payload.identity, get_client_ip(request))
    except AuthError as exc:
        _raise_http(exc, "Failed to request OTP")
    return CodeRequestResponse(
        message=issued.message,
        expires_in_seconds=issued.expires_in_seconds,
    )


@router.post("/verify-otp", response_model=CodeVerifyResponse, include_in_schema=False)
@router.post("/verify-code", response_model=CodeVerifyResponse)
def verify_code(
    payload: CodeVerifyRequest,
    request: Request,
    service: OtpService = Depends(get_otp_service),
) -> CodeVerifyResponse:
    try:
        session = service.verify_code(
            payload.identity, payload.code, get_client_ip(request)
        )
    except AuthError as exc:
        _raise_http(exc, "Failed to verify OTP")
    return CodeVerifyResponse(
        token=session.token,
        token_type="bearer",
        expires_in_seconds=session.expires_in_seconds,
        user=SessionUser(identity=session.identity, role=session.role),
    )


@router.get("/me", response_model=SessionUser)
def me(claims: SessionClaims = Depends(get_current_identity)) -> SessionUser:
    return SessionUser(identity=claims.identity, role=claims.role)

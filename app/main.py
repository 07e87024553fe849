import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, settings as default_settings
from app.database import build_engine, build_session_factory, init_db
from app.routers import auth, health
from app.services.allow_list import AllowList
from app.services.code_store import CodeStore
from app.services.email import Notifier, build_notifier
from app.services.otp import OtpService
from app.services.rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    notifier: Optional[Notifier] = None,
    limiter: Optional[RateLimiter] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = engine or build_engine(settings.database_url, settings.db_timeout_seconds)
    store = CodeStore(build_session_factory(engine))

    app = FastAPI(title="Zenitech Admin API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.code_store = store
    app.state.otp_service = OtpService(
        store=store,
        notifier=notifier or build_notifier(settings),
        allow_list=AllowList(settings.allowed_identities),
        limiter=limiter or RateLimiter(),
        settings=settings,
        clock=clock,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.frontend_urls),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(auth.router, prefix="/api")
    app.include_router(auth.router)  # Compatibility for clients calling /auth/* without /api.

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid request body", "message": "Invalid request body"},
        )

    # The admin dashboard reads error text from "message".
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        content = {"detail": exc.detail}
        if isinstance(exc.detail, str):
            content["message"] = exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None),
        )

    @app.on_event("startup")
    def startup() -> None:
        init_db(engine)
        purged = store.purge_expired(clock())
        if purged:
            LOGGER.info("Purged %s expired OTP code(s)", purged)

    @app.get("/")
    def root():
        return {"status": "Zenitech Admin API running"}

    return app


app = create_app()

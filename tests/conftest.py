from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.database import build_session_factory, init_db
from app.errors import DeliveryFailed
from app.main import create_app
from app.services.allow_list import AllowList
from app.services.code_store import CodeStore
from app.services.otp import OtpService
from app.services.rate_limit import RateLimiter

ALLOWED = ("user@example.com", "admin@zenitech.in")


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def send(self, identity: str, code: str) -> None:
        if self.fail:
            raise DeliveryFailed("mailbox unreachable")
        self.sent.append((identity, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


@pytest.fixture
def settings() -> Settings:
    return replace(
        Settings(),
        database_url="sqlite://",
        jwt_secret="test-jwt-secret",
        jwt_algorithm="HS256",
        session_token_expire_hours=8,
        session_role="admin",
        otp_hash_secret="test-pepper",
        otp_length=6,
        otp_ttl_seconds=300,
        allowed_identities=ALLOWED,
        hide_unauthorized_identities=False,
        rate_limit_max_requests=5,
        rate_limit_window_seconds=600,
        trust_forwarded_for=True,
        email_backend="log",
        notify_max_attempts=3,
        notify_backoff_seconds=0.0,
        frontend_urls=("http://localhost:5173",),
        log_level="INFO",
    )


@pytest.fixture
def clock() -> FakeClock:
    # Issued tokens are checked by PyJWT against wall time, so start from now.
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> CodeStore:
    return CodeStore(build_session_factory(engine))


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture
def service(store, notifier, limiter, settings, clock) -> OtpService:
    return OtpService(
        store=store,
        notifier=notifier,
        allow_list=AllowList(settings.allowed_identities),
        limiter=limiter,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def client(settings, engine, notifier, limiter, clock):
    app = create_app(
        settings=settings,
        engine=engine,
        notifier=notifier,
        limiter=limiter,
        clock=clock,
    )
    with TestClient(app) as test_client:
        yield test_client

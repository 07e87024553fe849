import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _build_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "") or "sqlite:///./admin.db"
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


@dataclass(frozen=True)
class Settings:
    database_url: str = _build_database_url()
    db_timeout_seconds: int = int(os.getenv("DB_TIMEOUT_SECONDS", "10"))
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    session_token_expire_hours: int = int(os.getenv("SESSION_TOKEN_EXPIRE_HOURS", "8"))
    session_role: str = os.getenv("SESSION_ROLE", "admin")
    otp_hash_secret: str = os.getenv("OTP_HASH_SECRET", "")
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    allowed_identities: tuple[str, ...] = _env_list("ADMIN_ALLOWED_EMAILS")
    hide_unauthorized_identities: bool = _env_bool("HIDE_UNAUTHORIZED_IDENTITIES", False)
    rate_limit_max_requests: int = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "5"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "600"))
    trust_forwarded_for: bool = _env_bool("TRUST_FORWARDED_FOR", True)
    email_backend: str = os.getenv("EMAIL_BACKEND", "gmail").strip().lower()
    email_timeout_seconds: int = int(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))
    notify_max_attempts: int = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"))
    notify_backoff_seconds: float = float(os.getenv("NOTIFY_BACKOFF_SECONDS", "0.5"))
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("EMAIL_USER", "")
    )
    otp_email_subject: str = os.getenv(
        "OTP_EMAIL_SUBJECT", "Your Zenitech Admin OTP"
    )
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv(
        "GMAIL_CREDENTIALS_FILE", os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    )
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: str = os.getenv("SMTP_USERNAME", os.getenv("EMAIL_USER", ""))
    smtp_password: str = os.getenv("SMTP_PASSWORD", os.getenv("EMAIL_PASS", ""))
    smtp_use_tls: bool = _env_bool("SMTP_USE_TLS", True)
    frontend_urls: tuple[str, ...] = _env_list(
        "FRONTEND_URLS", os.getenv("FRONTEND_URL", "http://localhost:5173")
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def code_hash_secret(self) -> str:
        return self.otp_hash_secret or self.jwt_secret


settings = Settings()

from __future__ import annotations

import base64
import json
import logging
import smtplib
import time
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Callable, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from app.config import Settings
from app.errors import DeliveryFailed

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class Notifier(Protocol):
    def send(self, identity: str, code: str) -> None:
        ...


def build_text_body(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        "Hello,\n\n"
        f"Your One-Time Password (OTP) is: {code}\n\n"
        f"This code will expire in {minutes} minute(s).\n"
        "If you did not request this, please ignore this email.\n\n"
        "Zenitech Admin"
    )


def build_html_body(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        '<div style="font-family:Arial,sans-serif;font-size:16px;color:#111">'
        "<p>Hello,</p>"
        "<p>Your One-Time Password (OTP) is:</p>"
        '<p style="font-size:28px;font-weight:bold;letter-spacing:4px;color:#e67e22">'
        f"{code}</p>"
        f"<p>This code will expire in {minutes} minute(s).</p>"
        "<p>If you did not request this, please ignore this email.</p>"
        "<p>Zenitech Admin</p>"
        "</div>"
    )


def build_message(
    sender: str, recipient: str, subject: str, code: str, ttl_seconds: int
) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = subject
    message.attach(MIMEText(build_text_body(code, ttl_seconds), "plain", "utf-8"))
    message.attach(MIMEText(build_html_body(code, ttl_seconds), "html", "utf-8"))
    return message


class GmailNotifier:
    """Sends the code through the Gmail REST API using a stored OAuth refresh token."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, identity: str, code: str) -> None:
        sender = self._settings.otp_email_sender
        if not sender:
            raise DeliveryFailed("OTP email sender is not configured")

        message = build_message(
            sender,
            identity,
            self._settings.otp_email_subject,
            code,
            self._settings.otp_ttl_seconds,
        )
        # Gmail API expects base64url-encoded RFC 2822 content.
        raw_message = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        token = self._get_access_token()

        payload = json.dumps({"raw": raw_message}).encode("utf-8")
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=self._settings.email_timeout_seconds) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error: %s", error_body)
            raise DeliveryFailed("Failed to send OTP email") from exc
        except URLError as exc:
            raise DeliveryFailed("Failed to reach Gmail API") from exc
        except OSError as exc:
            raise DeliveryFailed("Gmail API connection failed") from exc

    def _token_file_path(self) -> Path:
        if self._settings.gmail_token_file:
            return Path(self._settings.gmail_token_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "token.json"

    def _credentials_file_path(self) -> Path:
        if self._settings.gmail_credentials_file:
            return Path(self._settings.gmail_credentials_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "credentials.json"

    def _get_access_token(self) -> str:
        token_path = self._token_file_path()
        token_data = _load_json(token_path)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise DeliveryFailed("Gmail refresh token is missing")

        client_id, client_secret = self._resolve_client_details(token_data)
        token_uri = token_data.get("token_uri") or "https://oauth2.googleapis.com/token"

        payload = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")

        request = Request(token_uri, data=payload, method="POST")
        try:
            with urlopen(request, timeout=self._settings.email_timeout_seconds) as response:
                data = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail token refresh error: %s", error_body)
            raise DeliveryFailed("Failed to refresh Gmail token") from exc
        except URLError as exc:
            raise DeliveryFailed("Failed to reach Gmail token endpoint") from exc
        except (OSError, ValueError) as exc:
            raise DeliveryFailed("Unreadable Gmail token response") from exc
        if not isinstance(data, dict):
            raise DeliveryFailed("Unreadable Gmail token response")

        access_token = data.get("access_token")
        try:
            expires_in = int(data.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise DeliveryFailed("Unreadable Gmail token response") from exc
        if not access_token:
            raise DeliveryFailed("Gmail token refresh did not return an access token")

        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        _write_json(token_path, token_data)
        return access_token

    def _resolve_client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret

        credentials = _load_json(self._credentials_file_path())
        installed = credentials.get("installed", {})
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise DeliveryFailed("Gmail client credentials are missing")
        return client_id, client_secret


class SmtpNotifier:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, identity: str, code: str) -> None:
        settings = self._settings
        sender = settings.otp_email_sender or settings.smtp_username
        if not settings.smtp_host or not sender:
            raise DeliveryFailed("SMTP host or sender is not configured")

        message = build_message(
            sender, identity, settings.otp_email_subject, code, settings.otp_ttl_seconds
        )
        try:
            with smtplib.SMTP(
                settings.smtp_host, settings.smtp_port, timeout=settings.email_timeout_seconds
            ) as server:
                server.ehlo()
                if settings.smtp_use_tls:
                    server.starttls()
                    server.ehlo()
                if settings.smtp_username and settings.smtp_password:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.sendmail(sender, [identity], message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("SMTP delivery to=%s failed: %s", identity, exc)
            raise DeliveryFailed("Failed to send OTP email") from exc


class LogNotifier:
    """Development backend: writes the code to the server log instead of mailing it."""

    def send(self, identity: str, code: str) -> None:
        LOGGER.warning(
            "EMAIL_BACKEND=log: OTP for %s is %s (do not use in production)",
            identity,
            code,
        )


class RetryingNotifier:
    def __init__(
        self,
        notifier: Notifier,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._notifier = notifier
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def send(self, identity: str, code: str) -> None:
        delay = self._backoff_seconds
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._notifier.send(identity, code)
                return
            except DeliveryFailed as exc:
                if attempt == self._max_attempts:
                    LOGGER.error(
                        "Giving up on OTP email to=%s after %s attempt(s): %s",
                        identity,
                        attempt,
                        exc,
                    )
                    raise
                LOGGER.warning(
                    "OTP email attempt %s/%s to=%s failed: %s; retrying in %.1fs",
                    attempt,
                    self._max_attempts,
                    identity,
                    exc,
                    delay,
                )
                self._sleep(delay)
                delay *= 2


def build_notifier(settings: Settings) -> Notifier:
    if settings.email_backend == "smtp":
        backend: Notifier = SmtpNotifier(settings)
    elif settings.email_backend == "log":
        return LogNotifier()
    elif settings.email_backend == "gmail":
        backend = GmailNotifier(settings)
    else:
        raise RuntimeError(f"Unknown EMAIL_BACKEND: {settings.email_backend}")
    return RetryingNotifier(
        backend,
        max_attempts=settings.notify_max_attempts,
        backoff_seconds=settings.notify_backoff_seconds,
    )


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        expiry = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise DeliveryFailed(f"Missing Gmail file: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise DeliveryFailed(f"Unreadable Gmail file: {path}") from exc
    if not isinstance(data, dict):
        raise DeliveryFailed(f"Unreadable Gmail file: {path}")
    return data


def _write_json(path: Path, data: dict[str, Any]) -> None:
    try:
        path.write_text(json.dumps(data), encoding="utf-8")
    except OSError as exc:
        raise DeliveryFailed(f"Cannot store refreshed Gmail token: {path}") from exc

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.database import session_scope
from app.errors import Unavailable
from app.models.otp import OtpEntry

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OneTimeCode:
    identity: str
    code_hash: str
    expires_at: datetime


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CodeStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            LOGGER.error("OTP store %s failed", operation, exc_info=True)
            raise Unavailable() from exc

    def insert(self, record: OneTimeCode, now: datetime | None = None) -> None:
        with self._session("insert") as session:
            session.add(self._to_entry(record, now))

    def replace(self, record: OneTimeCode, now: datetime | None = None) -> int:
        """Drop every code held for the identity and store ``record`` in one transaction."""
        with self._session("replace") as session:
            result = session.execute(
                delete(OtpEntry).where(OtpEntry.identity == record.identity)
            )
            session.add(self._to_entry(record, now))
            return result.rowcount

    def find_one(self, identity: str, code_hash: str) -> OneTimeCode | None:
        with self._session("lookup") as session:
            entry = session.execute(
                select(OtpEntry)
                .where(OtpEntry.identity == identity, OtpEntry.code_hash == code_hash)
                .order_by(OtpEntry.expires_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                return None
            return OneTimeCode(
                identity=entry.identity,
                code_hash=entry.code_hash,
                expires_at=_as_utc(entry.expires_at),
            )

    def delete_all(self, identity: str) -> int:
        with self._session("delete") as session:
            result = session.execute(
                delete(OtpEntry).where(OtpEntry.identity == identity)
            )
            return result.rowcount

    def count(self, identity: str) -> int:
        with self._session("count") as session:
            entries = session.execute(
                select(OtpEntry.id).where(OtpEntry.identity == identity)
            ).all()
            return len(entries)

    def purge_expired(self, now: datetime) -> int:
        with self._session("purge") as session:
            result = session.execute(delete(OtpEntry).where(OtpEntry.expires_at < now))
            return result.rowcount

    @staticmethod
    def _to_entry(record: OneTimeCode, now: datetime | None) -> OtpEntry:
        return OtpEntry(
            identity=record.identity,
            code_hash=record.code_hash,
            expires_at=record.expires_at,
            created_at=now or datetime.now(timezone.utc),
        )

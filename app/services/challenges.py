from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.database import session_scope
from app.models.challenge import ChallengeEntry
from app.services.errors import StoreError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Challenge:
    identifier: str
    code: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().casefold()


class ChallengeStore(Protocol):
    def get(self, identifier: str) -> Challenge | None: ...

    def put(self, challenge: Challenge) -> None: ...

    def delete(self, identifier: str, code: str | None = None) -> bool:
        """Remove the challenge; with ``code``, only if it still holds that code."""
        ...


class InMemoryChallengeStore:
    """Single-process store holding at most one challenge per identifier."""

    def __init__(self) -> None:
        self._entries: dict[str, Challenge] = {}
        self._lock = threading.Lock()

    def get(self, identifier: str) -> Challenge | None:
        with self._lock:
            return self._entries.get(identifier)

    def put(self, challenge: Challenge) -> None:
        with self._lock:
            self._entries[challenge.identifier] = challenge

    def delete(self, identifier: str, code: str | None = None) -> bool:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None or (code is not None and entry.code != code):
                return False
            del self._entries[identifier]
            return True

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def _store_scope(factory: sessionmaker | None):
    try:
        with session_scope(factory) as session:
            yield session
    except SQLAlchemyError as exc:
        LOGGER.exception("Challenge store operation failed")
        raise StoreError("OTP storage is unavailable") from exc


class SqlChallengeStore:
    """Challenge store shared by every worker pointed at the same database.

    Deletes can be made conditional on the stored code, which lets the
    manager consume a challenge exactly once across processes.
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory

    def get(self, identifier: str) -> Challenge | None:
        with _store_scope(self._session_factory) as session:
            result = session.execute(
                select(ChallengeEntry).where(ChallengeEntry.identifier == identifier)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                return None
            return Challenge(
                identifier=entry.identifier,
                code=entry.code,
                issued_at=_as_utc(entry.issued_at),
                expires_at=_as_utc(entry.expires_at),
            )

    def put(self, challenge: Challenge) -> None:
        with _store_scope(self._session_factory) as session:
            session.execute(
                delete(ChallengeEntry).where(
                    ChallengeEntry.identifier == challenge.identifier
                )
            )
            session.add(
                ChallengeEntry(
                    identifier=challenge.identifier,
                    code=challenge.code,
                    issued_at=challenge.issued_at,
                    expires_at=challenge.expires_at,
                )
            )

    def delete(self, identifier: str, code: str | None = None) -> bool:
        conditions = [ChallengeEntry.identifier == identifier]
        if code is not None:
            conditions.append(ChallengeEntry.code == code)
        with _store_scope(self._session_factory) as session:
            result = session.execute(delete(ChallengeEntry).where(*conditions))
            return result.rowcount > 0

    def purge_expired(self, now: datetime) -> int:
        with _store_scope(self._session_factory) as session:
            result = session.execute(
                delete(ChallengeEntry).where(ChallengeEntry.expires_at <= now)
            )
            return result.rowcount

    def __len__(self) -> int:
        with _store_scope(self._session_factory) as session:
            return session.execute(
                select(func.count()).select_from(ChallengeEntry)
            ).scalar_one()


def build_challenge_store(backend: str) -> ChallengeStore:
    if backend == "memory":
        return InMemoryChallengeStore()
    if backend == "database":
        return SqlChallengeStore()
    raise ValueError(f"Unknown OTP store backend: {backend}")

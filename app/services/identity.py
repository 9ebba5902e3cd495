from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import secrets
from typing import Protocol

import bcrypt
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.database import session_scope
from app.models.user import UserEntry
from app.services.challenges import normalize_identifier
from app.services.errors import AccountNotFound, InvalidInput, ProviderError
from app.services.tokens import create_custom_token

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Account:
    uid: str
    email: str


class IdentityProvider(Protocol):
    def resolve(self, identifier: str) -> Account: ...

    def issue_credential(self, account: Account) -> str: ...

    def update_secret(self, account: Account, new_secret: str) -> None: ...


def hash_password(password: str) -> str:
    encoded = password.encode("utf-8")
    # bcrypt would silently ignore anything past 72 bytes.
    if len(encoded) > 72:
        raise InvalidInput("Password must be at most 72 bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def _to_account(entry: UserEntry) -> Account:
    return Account(uid=entry.uid, email=entry.email)


class UserStore:
    """Account lookup and credential minting backed by the users table."""

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory

    def create_user(self, email: str, password: str | None = None) -> Account:
        key = normalize_identifier(email)
        if not key or "@" not in key:
            raise InvalidInput("A valid email address is required")
        now = datetime.now(timezone.utc)
        with session_scope(self._session_factory) as session:
            existing = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if existing is not None:
                return _to_account(existing)
            entry = UserEntry(
                uid=secrets.token_hex(14),
                email=key,
                password_hash=hash_password(password) if password else None,
                created_at=now,
                updated_at=now,
            )
            session.add(entry)
            session.flush()
            return _to_account(entry)

    def resolve(self, identifier: str) -> Account:
        key = normalize_identifier(identifier)
        try:
            with session_scope(self._session_factory) as session:
                entry = session.execute(
                    select(UserEntry).where(UserEntry.email == key)
                ).scalar_one_or_none()
                account = _to_account(entry) if entry is not None else None
        except SQLAlchemyError as exc:
            raise ProviderError("Failed to look up account") from exc
        if account is None:
            raise AccountNotFound(f"No account found for {key}")
        return account

    def issue_credential(self, account: Account) -> str:
        return create_custom_token(account.uid, account.email)

    def update_secret(self, account: Account, new_secret: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                entry = session.execute(
                    select(UserEntry).where(UserEntry.uid == account.uid)
                ).scalar_one_or_none()
                if entry is None:
                    raise AccountNotFound(f"No account found for {account.email}")
                entry.password_hash = hash_password(new_secret)
                entry.updated_at = datetime.now(timezone.utc)
        except SQLAlchemyError as exc:
            raise ProviderError("Failed to update password") from exc
        LOGGER.info("Password updated for uid=%s", account.uid)


user_store = UserStore()

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
import logging
import secrets
import threading
from typing import Any

from app.config import settings
from app.services.challenges import (
    Challenge,
    ChallengeStore,
    build_challenge_store,
    normalize_identifier,
)
from app.services.email import Notifier, gmail_notifier
from app.services.errors import (
    DeliveryError,
    InvalidInput,
    InvalidOrExpiredChallenge,
    OtpError,
    ProviderError,
)
from app.services.identity import Account, IdentityProvider, user_store

LOGGER = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999
# bcrypt ignores everything past 72 bytes.
MAX_SECRET_BYTES = 72


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


class KeyedLock:
    """Striped locks so work on one identifier never blocks unrelated identifiers."""

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


def _require_identifier(identifier: Any) -> str:
    if not isinstance(identifier, str) or not identifier.strip():
        raise InvalidInput("Email is required")
    return normalize_identifier(identifier)


def _code_text(code: Any) -> str:
    if code is None:
        return ""
    return str(code).strip()


def _require_code(code: Any) -> None:
    if not _code_text(code):
        raise InvalidInput("OTP is required")


class OtpManager:
    """Issues, verifies and consumes one-time codes.

    At most one challenge is live per normalized identifier; issuing again
    silently replaces the previous one. Expired challenges are removed when a
    lookup observes them. Exchanges consume the challenge only after the
    identity provider call succeeds, so a downstream failure leaves the code
    usable for a retry.
    """

    def __init__(
        self,
        store: ChallengeStore,
        notifier: Notifier,
        identity_provider: IdentityProvider,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
        lock_stripes: int = 64,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._identity_provider = identity_provider
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks = KeyedLock(lock_stripes)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(self, identifier: str, ttl_seconds: int | None = None) -> Challenge:
        key = _require_identifier(identifier)
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise InvalidInput("OTP lifetime must be positive")
        now = self._clock()
        challenge = Challenge(
            identifier=key,
            code=generate_code(),
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        with self._locks.for_key(key):
            self._store.put(challenge)
        LOGGER.info("OTP issued for %s, expires at %s", key, challenge.expires_at)
        return challenge

    def verify(self, identifier: str, code: Any) -> bool:
        if not isinstance(identifier, str) or not identifier.strip():
            return False
        key = normalize_identifier(identifier)
        with self._locks.for_key(key):
            return self._matches(key, code)

    def consume(self, identifier: str) -> None:
        if not isinstance(identifier, str) or not identifier.strip():
            return
        key = normalize_identifier(identifier)
        with self._locks.for_key(key):
            self._consume(key)

    def issue_and_notify(self, identifier: str, ttl_seconds: int | None = None) -> Challenge:
        challenge = self.issue(identifier, ttl_seconds)
        try:
            self._notifier.send(challenge.identifier, challenge.code)
        except DeliveryError:
            LOGGER.warning("OTP delivery failed for %s", challenge.identifier)
            raise
        except Exception as exc:
            LOGGER.exception("OTP delivery failed for %s", challenge.identifier)
            raise DeliveryError("Failed to deliver OTP") from exc
        return challenge

    def verify_and_exchange(self, identifier: str, code: Any) -> str:
        key = _require_identifier(identifier)
        _require_code(code)
        with self._locks.for_key(key):
            challenge, account = self._resolve_verified(key, code)
            credential = self._call_provider(
                self._identity_provider.issue_credential, account
            )
            self._claim(challenge)
        LOGGER.info("OTP exchanged for credential for %s", key)
        return credential

    def verify_and_update_secret(self, identifier: str, code: Any, new_secret: str) -> None:
        key = _require_identifier(identifier)
        _require_code(code)
        if not isinstance(new_secret, str) or not new_secret:
            raise InvalidInput("New password is required")
        if len(new_secret.encode("utf-8")) > MAX_SECRET_BYTES:
            raise InvalidInput(f"New password must be at most {MAX_SECRET_BYTES} bytes")
        with self._locks.for_key(key):
            challenge, account = self._resolve_verified(key, code)
            self._call_provider(
                self._identity_provider.update_secret, account, new_secret
            )
            self._claim(challenge)
        LOGGER.info("OTP exchanged for password update for %s", key)

    def _live_match(self, key: str, code: Any) -> Challenge | None:
        challenge = self._store.get(key)
        if challenge is None:
            return None
        if challenge.is_expired(self._clock()):
            # Conditional so a challenge re-issued by another worker survives.
            self._store.delete(key, challenge.code)
            LOGGER.info("Expired OTP discarded for %s", key)
            return None
        submitted = _code_text(code)
        if not submitted or not secrets.compare_digest(
            challenge.code.encode("utf-8"), submitted.encode("utf-8")
        ):
            LOGGER.info("OTP mismatch for %s", key)
            return None
        return challenge

    def _matches(self, key: str, code: Any) -> bool:
        return self._live_match(key, code) is not None

    def _consume(self, key: str) -> None:
        if self._store.delete(key):
            LOGGER.info("OTP consumed for %s", key)

    def _claim(self, challenge: Challenge) -> None:
        # Another worker sharing the store may have used the same code first.
        if not self._store.delete(challenge.identifier, challenge.code):
            LOGGER.warning("OTP for %s was already used", challenge.identifier)
            raise InvalidOrExpiredChallenge("Invalid or expired OTP")
        LOGGER.info("OTP consumed for %s", challenge.identifier)

    def _resolve_verified(self, key: str, code: Any) -> tuple[Challenge, Account]:
        challenge = self._live_match(key, code)
        if challenge is None:
            raise InvalidOrExpiredChallenge("Invalid or expired OTP")
        account = self._call_provider(self._identity_provider.resolve, key)
        return challenge, account

    def _call_provider(self, operation: Callable[..., Any], *args: Any) -> Any:
        try:
            return operation(*args)
        except OtpError:
            raise
        except Exception as exc:
            LOGGER.exception("Identity provider call failed")
            raise ProviderError("Identity provider request failed") from exc


otp_manager = OtpManager(
    store=build_challenge_store(settings.otp_store_backend),
    notifier=gmail_notifier,
    identity_provider=user_store,
    ttl_seconds=settings.otp_ttl_seconds,
    lock_stripes=settings.otp_lock_stripes,
)

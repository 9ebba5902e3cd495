"""
Tests for challenge storage and identifier normalization
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.database import build_engine, build_session_factory, init_db
from app.services.challenges import (
    Challenge,
    InMemoryChallengeStore,
    SqlChallengeStore,
    build_challenge_store,
    normalize_identifier,
)
from app.services.errors import StoreError
from app.services.otp import OtpManager

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _challenge(identifier="user@example.com", code="482913", ttl=300):
    return Challenge(
        identifier=identifier,
        code=code,
        issued_at=NOW,
        expires_at=NOW + timedelta(seconds=ttl),
    )


@pytest.fixture
def sql_store():
    engine = build_engine("sqlite://")
    init_db(engine)
    return SqlChallengeStore(build_session_factory(engine))


def test_normalize_identifier():
    """Email addresses are trimmed and case-folded"""
    assert normalize_identifier("  User@Example.COM\n") == "user@example.com"
    assert normalize_identifier("user@example.com") == "user@example.com"


def test_challenge_expiry_boundary():
    """A challenge expires exactly at expires_at"""
    challenge = _challenge()
    assert challenge.is_expired(NOW + timedelta(seconds=299)) is False
    assert challenge.is_expired(NOW + timedelta(seconds=300)) is True


def test_memory_store_overwrites():
    """Putting a second challenge for the same identifier replaces the first"""
    store = InMemoryChallengeStore()
    store.put(_challenge(code="111111"))
    store.put(_challenge(code="222222"))
    assert store.get("user@example.com").code == "222222"
    assert len(store) == 1


def test_memory_store_delete():
    """Delete reports whether an entry existed"""
    store = InMemoryChallengeStore()
    store.put(_challenge())
    assert store.delete("user@example.com") is True
    assert store.delete("user@example.com") is False
    assert store.get("user@example.com") is None


def test_memory_store_purge_expired():
    """Active eviction drops only expired entries"""
    store = InMemoryChallengeStore()
    store.put(_challenge("a@example.com", ttl=10))
    store.put(_challenge("b@example.com", ttl=600))
    assert store.purge_expired(NOW + timedelta(seconds=60)) == 1
    assert store.get("a@example.com") is None
    assert store.get("b@example.com") is not None


def test_sql_store_round_trip(sql_store):
    """The SQL store returns timezone-aware challenges"""
    sql_store.put(_challenge())
    stored = sql_store.get("user@example.com")
    assert stored == _challenge()
    assert stored.expires_at.tzinfo is not None


def test_sql_store_overwrites(sql_store):
    """Only one row is kept per identifier"""
    sql_store.put(_challenge(code="111111"))
    sql_store.put(_challenge(code="222222"))
    assert sql_store.get("user@example.com").code == "222222"


def test_sql_store_delete_and_purge(sql_store):
    """Delete and purge remove rows"""
    sql_store.put(_challenge("a@example.com", ttl=10))
    sql_store.put(_challenge("b@example.com", ttl=600))
    assert sql_store.delete("a@example.com") is True
    assert sql_store.delete("a@example.com") is False
    sql_store.put(_challenge("c@example.com", ttl=10))
    assert sql_store.purge_expired(NOW + timedelta(seconds=60)) == 1
    assert sql_store.get("b@example.com") is not None
    assert sql_store.get("missing@example.com") is None


def test_build_challenge_store():
    """Backends are selected by name"""
    assert isinstance(build_challenge_store("memory"), InMemoryChallengeStore)
    assert isinstance(build_challenge_store("database"), SqlChallengeStore)
    with pytest.raises(ValueError):
        build_challenge_store("redis")


def test_conditional_delete_checks_code(store):
    """A delete guarded by a code leaves a different challenge in place"""
    store.put(_challenge(code="222222"))
    assert store.delete("user@example.com", "111111") is False
    assert store.get("user@example.com").code == "222222"
    assert store.delete("user@example.com", "222222") is True
    assert store.delete("user@example.com", "222222") is False


def test_sql_store_failure_is_store_error():
    """Database errors are reported as StoreError"""
    engine = build_engine("sqlite://")
    broken = SqlChallengeStore(build_session_factory(engine))
    with pytest.raises(StoreError):
        broken.get("user@example.com")
    with pytest.raises(StoreError):
        broken.put(_challenge())
    with pytest.raises(StoreError):
        broken.delete("user@example.com", "482913")


def test_manager_reports_store_failure(notifier, identity_provider, clock):
    """Store outages reach the caller as an OTP error category"""
    engine = build_engine("sqlite://")
    manager = OtpManager(
        store=SqlChallengeStore(build_session_factory(engine)),
        notifier=notifier,
        identity_provider=identity_provider,
        clock=clock,
    )
    with pytest.raises(StoreError):
        manager.issue("user@example.com")
    with pytest.raises(StoreError):
        manager.verify_and_exchange("user@example.com", "482913")

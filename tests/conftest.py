import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-for-the-otp-service-suite"
os.environ["OTP_STORE_BACKEND"] = "memory"
os.environ["OTP_EXPOSE_CODE"] = "false"

from datetime import datetime, timedelta, timezone

import pytest

from app.database import build_engine, build_session_factory, init_db
from app.services.challenges import InMemoryChallengeStore, SqlChallengeStore
from app.services.errors import AccountNotFound, DeliveryError
from app.services.identity import Account
from app.services.otp import OtpManager


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeNotifier:
    def __init__(self) -> None:
        self.sent = []
        self.error = None

    def send(self, identifier: str, code: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((identifier, code))


class FakeIdentityProvider:
    def __init__(self) -> None:
        self.accounts = {}
        self.secrets = {}
        self.credential_error = None
        self.update_error = None
        self.issued = 0

    def add(self, email: str) -> Account:
        account = Account(uid=f"uid-{len(self.accounts) + 1}", email=email)
        self.accounts[email] = account
        return account

    def resolve(self, identifier: str) -> Account:
        account = self.accounts.get(identifier)
        if account is None:
            raise AccountNotFound(f"No account found for {identifier}")
        return account

    def issue_credential(self, account: Account) -> str:
        if self.credential_error is not None:
            raise self.credential_error
        self.issued += 1
        return f"token-{account.uid}-{self.issued}"

    def update_secret(self, account: Account, new_secret: str) -> None:
        if self.update_error is not None:
            raise self.update_error
        self.secrets[account.uid] = new_secret


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def identity_provider():
    provider = FakeIdentityProvider()
    provider.add("user@example.com")
    return provider


@pytest.fixture(params=["memory", "database"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryChallengeStore()
        return
    # File-backed so each thread gets its own connection.
    engine = build_engine(f"sqlite:///{tmp_path / 'otp.db'}")
    init_db(engine)
    yield SqlChallengeStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def manager(store, notifier, identity_provider, clock):
    return OtpManager(
        store=store,
        notifier=notifier,
        identity_provider=identity_provider,
        ttl_seconds=300,
        clock=clock,
    )


@pytest.fixture
def delivery_failure():
    return DeliveryError("Failed to send OTP email")

"""Shared fixtures: settings environment, fake clock and fresh stores."""

import pytest

from storeguard.audit import AuditLogger, HashChainedAuditStore
from storeguard.auth.lockout import LockoutService
from storeguard.auth.mfa import MFAEnrollment, MFAService
from storeguard.auth.passwords import PasswordHasher_
from storeguard.auth.rate_limit import RateLimiter
from storeguard.config import get_settings
from storeguard.crypto.field_crypto import FieldEncryptor, get_default_encryptor
from storeguard.store import InMemoryUserStore, UserRecord


TEST_KEY = "0f1e2d3c4b5a69788796a5b4c3d2e1f00f1e2d3c4b5a69788796a5b4c3d2e1f0"

# 2023-11-14T22:13:30Z, aligned to a 30-second TOTP step
CLOCK_START = 1_700_000_010.0


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = CLOCK_START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Known key material and no SMS credentials for every test."""
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_KEY)
    for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_default_encryptor.cache_clear()
    yield
    get_settings.cache_clear()
    get_default_encryptor.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def encryptor():
    return FieldEncryptor(TEST_KEY)


@pytest.fixture
def hasher():
    """Argon2id with minimal cost so tests stay fast."""
    return PasswordHasher_(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def users():
    return InMemoryUserStore()


@pytest.fixture
def owner(users, hasher):
    return users.add(UserRecord(
        id="cloq8x2k70000qzrmn1w4h5v6",
        email="owner@example.com",
        role="OWNER",
        phone="(555) 123-4567",
        password_hash=hasher.hash_password("Counter2Shop"),
    ))


@pytest.fixture
def mfa_service(encryptor):
    return MFAService(encryptor, issuer="StoreGuard")


@pytest.fixture
def enrollment(users, mfa_service):
    return MFAEnrollment(users, mfa_service)


@pytest.fixture
def lockout(users, clock):
    return LockoutService(users, max_attempts=5, lockout_minutes=15, clock=clock)


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def audit_store():
    return HashChainedAuditStore()


@pytest.fixture
def audit_logger(audit_store):
    return AuditLogger(audit_store)

"""Shared test fixtures for the auth test suite.

Infrastructure is replaced by in-memory fakes and Mock(spec=...) so the
suite runs without Valkey, PostgreSQL, Vault or the auth provider.
"""

import json
from pathlib import Path
from typing import Any
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

from auth.config import AuthConfig
from auth.events import AuthEventBus
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionManager
from auth.session_store import SessionStore
from auth.types import UserProfile, UserRole, VerificationStatus
from clients.auth_provider_client import AuthProviderClient
from utils.timezone import now_utc
from utils.user_context import clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "farmer@agrolinkfarms.com"

TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")

START_TIME = 1_700_000_000.0


# =============================================================================
# FAKES
# =============================================================================


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeValkey:
    """Dict-backed stand-in for ValkeyClient with TTLs on the fake clock."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def get_json(self, key: str) -> dict | None:
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None

    def set_json(self, key: str, value: dict, expire_seconds: int | None = None) -> None:
        expires_at = self._clock() + expire_seconds if expire_seconds else None
        self._data[key] = (json.dumps(value), expires_at)

    def set_if_absent(self, key: str, expire_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = ("1", self._clock() + expire_seconds)
        return True

    def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return int(entry[1] - self._clock())

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def close(self) -> None:
        pass


class FakeProfileDatabase:
    """In-memory profile store with injectable failures."""

    def __init__(self):
        self.rows: dict[UUID, UserProfile] = {}
        self.fail_creates = 0
        self.fail_reads = False
        self.create_calls = 0

    def get_profile(self, user_id: UUID) -> UserProfile | None:
        if self.fail_reads:
            raise RuntimeError("database unavailable")
        return self.rows.get(user_id)

    def create_profile(
        self,
        user_id: UUID,
        email: str,
        name: str,
        role: UserRole,
        verification_status: VerificationStatus,
    ) -> UserProfile:
        self.create_calls += 1
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise RuntimeError("connection reset")
        if user_id not in self.rows:
            self.rows[user_id] = UserProfile(
                id=user_id,
                email=email.lower(),
                name=name,
                role=role,
                verification_status=verification_status,
                created_at=now_utc(),
            )
        return self.rows[user_id]

    def update_profile(self, user_id: UUID, name: str) -> UserProfile | None:
        profile = self.rows.get(user_id)
        if profile is None:
            return None
        updated = profile.model_copy(update={"name": name, "updated_at": now_utc()})
        self.rows[user_id] = updated
        return updated


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AuthConfig:
    """Fast retries so backoff paths finish within a test."""
    return AuthConfig(
        app_base_url="https://agrolinkfarms.com",
        auto_refresh_max_retries=2,
        auto_refresh_base_delay_seconds=0.01,
        profile_create_retries=3,
        profile_retry_base_delay_seconds=0,
    )


@pytest.fixture
def provider() -> Mock:
    return Mock(spec=AuthProviderClient)


@pytest.fixture
def valkey(clock) -> FakeValkey:
    return FakeValkey(clock)


@pytest.fixture
def session_store(valkey, config) -> SessionStore:
    return SessionStore(valkey, config)


@pytest.fixture
def profiles() -> FakeProfileDatabase:
    return FakeProfileDatabase()


@pytest.fixture
def security_logger() -> Mock:
    return Mock(spec=SecurityLogger)


@pytest.fixture
def session_manager(provider, config, clock):
    manager = SessionManager(provider, config, events=AuthEventBus(), clock=clock)
    yield manager
    manager.destroy()


@pytest.fixture
def service(config, provider, session_manager, profiles, valkey, security_logger) -> AuthService:
    return AuthService(
        config=config,
        provider=provider,
        session_manager=session_manager,
        profiles=profiles,
        rate_limiter=RateLimiter(valkey, config),
        security_logger=security_logger,
    )


@pytest.fixture
def identity_payload():
    """Factory for the provider's user object."""

    def make(
        user_id: UUID | None = None,
        email: str = TEST_USER_EMAIL,
        name: str | None = "Amina Farmer",
        role: str | None = "buyer",
    ) -> dict[str, Any]:
        metadata = {}
        if name is not None:
            metadata["name"] = name
        if role is not None:
            metadata["role"] = role
        return {
            "id": str(user_id or TEST_USER_ID),
            "email": email,
            "user_metadata": metadata,
            "email_confirmed_at": "2025-06-01T12:00:00Z",
        }

    return make


@pytest.fixture
def session_payload(clock, identity_payload):
    """Factory for a provider token response expiring expires_in seconds from the fake now."""

    def make(
        expires_in: int = 3600,
        access_token: str | None = None,
        refresh_token: str | None = None,
        user: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "access_token": access_token or f"access-{uuid4().hex}",
            "refresh_token": refresh_token or f"refresh-{uuid4().hex}",
            "token_type": "bearer",
            "expires_in": expires_in,
            "expires_at": int(clock()) + expires_in,
            "user": user if user is not None else identity_payload(),
        }

    return make


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test identity's id."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """A second identity, for ownership checks."""
    return TEST_USER_B_ID

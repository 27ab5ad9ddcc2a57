"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``ourstreet`` import so the
settings singleton picks them up.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("AUDIT_BACKEND", "memory")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-for-tokens")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from ourstreet.adapters.audit_store.in_memory import InMemoryAuditStore  # noqa: E402
from ourstreet.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter  # noqa: E402
from ourstreet.core.audit import get_audit_recorder  # noqa: E402
from ourstreet.core.auth import get_token_service, get_user_directory  # noqa: E402
from ourstreet.core.rate_limit import get_rate_limiter  # noqa: E402
from ourstreet.main import app as main_app  # noqa: E402
from ourstreet.services.audit_service import AuditRecorder  # noqa: E402
from ourstreet.services.token_service import TokenService  # noqa: E402
from ourstreet.services.user_directory import InMemoryUserDirectory  # noqa: E402


class FakeClock:
    """Deterministic UTC clock; each call can advance by a fixed step."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(0)) -> None:
        self.current = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + self.step
        return now

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def limiter_clock() -> Mock:
    return Mock(return_value=1_000.0)


@pytest.fixture
def limiter(limiter_clock: Mock) -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(clock=limiter_clock)


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def recorder(audit_store: InMemoryAuditStore) -> AuditRecorder:
    # One millisecond between events keeps timestamps strictly increasing
    return AuditRecorder(audit_store, clock=FakeClock(step=timedelta(milliseconds=1)))


@pytest.fixture
def token_service() -> TokenService:
    return TokenService(secret="test-secret-for-tokens", expires_minutes=60)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    directory = InMemoryUserDirectory()
    directory.add_user(
        user_id="admin-1",
        email="admin@ourstreet.test",
        password="admin-pass-123",
        name="Ada Admin",
        role="admin",
    )
    directory.add_user(
        user_id="citizen-1",
        email="citizen@ourstreet.test",
        password="citizen-pass-123",
        name="Cid Citizen",
        role="citizen",
    )
    return directory


@pytest.fixture
def app(
    limiter: InMemoryFixedWindowRateLimiter,
    recorder: AuditRecorder,
    token_service: TokenService,
    users: InMemoryUserDirectory,
) -> FastAPI:
    """The application with every process-wide collaborator swapped for a fresh one."""
    main_app.dependency_overrides[get_rate_limiter] = lambda: limiter
    main_app.dependency_overrides[get_audit_recorder] = lambda: recorder
    main_app.dependency_overrides[get_token_service] = lambda: token_service
    main_app.dependency_overrides[get_user_directory] = lambda: users
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def admin_headers(token_service: TokenService) -> dict[str, str]:
    token = token_service.issue("admin-1", "admin@ourstreet.test", "admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def citizen_headers(token_service: TokenService) -> dict[str, str]:
    token = token_service.issue("citizen-1", "citizen@ourstreet.test", "citizen")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_clock() -> type[FakeClock]:
    return FakeClock

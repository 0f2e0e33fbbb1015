"""
Test fixtures for the CampusHub auth service.

Every test gets a fresh application wired to the in-memory repository and
in-memory rate limiters driven by a controllable clock.
"""
import os

# Configure the environment before anything reads it
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-access-secret-for-automation-only"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-for-automation-only"
os.environ["REDIS_URL"] = ""
os.environ["DATABASE_CONNECTION_STRING"] = ""
os.environ["LOGFIRE_WRITE_TOKEN"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from main import create_app  # noqa: E402
from repositories.memory import MemoryUserRepository  # noqa: E402
from security.helpers import get_password_context  # noqa: E402
from security.refresh_token import RefreshTokenStore  # noqa: E402
from security.tokens import TokenCodec  # noqa: E402
from services.rate_limiter import (  # noqa: E402
    GLOBAL_KEY_PREFIX,
    LOGIN_KEY_PREFIX,
    MemoryRateLimiter,
)
from services.sessions import SessionManager  # noqa: E402
from utils.config import Settings  # noqa: E402

TEST_PASSWORD = "Str0ng!Passw0rd"
IDP_SECRET = "test-identity-provider-secret"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        jwt_secret=os.environ["JWT_SECRET"],
        jwt_refresh_secret=os.environ["JWT_REFRESH_SECRET"],
        external_identity_secret=IDP_SECRET,
        bcrypt_rounds=4,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    return MemoryUserRepository()


@pytest.fixture
def codec(settings):
    return TokenCodec.from_settings(settings)


@pytest.fixture
def store(repository, codec):
    return RefreshTokenStore(repository, codec)


@pytest.fixture
def login_limiter(clock):
    return MemoryRateLimiter(
        points=5,
        duration=900,
        block_duration=900,
        key_prefix=LOGIN_KEY_PREFIX,
        clock=clock,
    )


@pytest.fixture
def global_limiter(clock):
    return MemoryRateLimiter(
        points=100, duration=900, key_prefix=GLOBAL_KEY_PREFIX, clock=clock
    )


@pytest.fixture
def session_manager(repository, codec, store, login_limiter, settings):
    return SessionManager(
        repository=repository,
        codec=codec,
        store=store,
        login_limiter=login_limiter,
        settings=settings,
        pwd_context=get_password_context(settings.bcrypt_rounds),
    )


@pytest.fixture
def app(settings, repository, login_limiter, global_limiter):
    return create_app(
        settings=settings,
        repository=repository,
        login_limiter=login_limiter,
        global_limiter=global_limiter,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register_user(client):
    """Register an account through the API and return the response body."""

    def _register(email: str = "student@campus.io", password: str = TEST_PASSWORD):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, "full_name": "Test Student"},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _register

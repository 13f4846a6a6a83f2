"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-key-that-is-at-least-32-characters"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SMS_BACKEND"] = "console"
os.environ["OTP_STORE"] = "database"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from usersvc.api.deps import get_memory_otp_store, get_sms
from usersvc.database import get_session
from usersvc.main import app
from usersvc.models import ADMIN_ROLE, AuthProvider, User
from usersvc.services import accounts
from usersvc.services.rate_limit import get_rate_limiter
from usersvc.services.resilience import sms_circuit
from usersvc.services.sms import SmsBackend, SmsResult
from usersvc.services.tokens import TokenService, build_access_claims

USER_PASSWORD = "password123"


class RecordingSmsBackend(SmsBackend):
    """SMS backend that keeps every message instead of sending it."""

    name = "recording"

    def __init__(self, success: bool = True):
        self.success = success
        self.messages: list[tuple[str, str]] = []

    async def send(self, phone: str, message: str) -> SmsResult:
        self.messages.append((phone, message))
        return SmsResult(success=self.success, provider_info={"provider": self.name})


@pytest.fixture(autouse=True)
def reset_process_state():
    """Clear process-wide limiter, OTP store and circuit state between tests."""
    get_rate_limiter().reset()
    get_memory_otp_store().clear()
    sms_circuit.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def mock_queue():
    """Mock the SAQ queue to avoid Redis connections in tests."""
    mock_job = MagicMock()
    mock_job.id = "test-job-id"

    with patch("usersvc.tasks.queue.queue.enqueue", new_callable=AsyncMock) as mock_enqueue:
        mock_enqueue.return_value = mock_job
        yield mock_enqueue


@pytest.fixture
async def test_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def sms_backend() -> RecordingSmsBackend:
    return RecordingSmsBackend()


@pytest.fixture
async def client(
    session: AsyncSession, sms_backend: RecordingSmsBackend
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_sms] = lambda: sms_backend

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def user(session: AsyncSession) -> User:
    """Create a test user with a password, email and phone."""
    return await accounts.create_user(
        session,
        username="testuser",
        email="test@example.com",
        phone="+251911223344",
        password=USER_PASSWORD,
        auth_provider=AuthProvider.PASSWORD,
        full_name="Test User",
    )


@pytest.fixture
async def admin_user(session: AsyncSession) -> User:
    """Create a test admin user."""
    admin = await accounts.create_user(
        session,
        username="admin",
        email="admin@example.com",
        phone="+251911000000",
        password=USER_PASSWORD,
        is_verified=True,
    )
    await accounts.get_or_create_role(session, ADMIN_ROLE)
    await session.commit()
    await accounts.assign_role(session, admin.id, ADMIN_ROLE)
    return admin


def make_access_token(session: AsyncSession, user: User, roles: list[str] | None = None) -> str:
    return TokenService(session).sign_access_token(build_access_claims(user, roles or ["user"]))


@pytest.fixture
def user_token(session: AsyncSession, user: User) -> str:
    """Create a JWT access token for the test user."""
    return make_access_token(session, user)


@pytest.fixture
def admin_token(session: AsyncSession, admin_user: User) -> str:
    """Create a JWT access token for the admin user."""
    return make_access_token(session, admin_user, ["admin", "user"])


@pytest.fixture
def auth_headers(user_token: str) -> dict[str, str]:
    """Create authorization headers for the test user."""
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture
def admin_headers(admin_token: str) -> dict[str, str]:
    """Create authorization headers for the admin user."""
    return {"Authorization": f"Bearer {admin_token}"}


# Helper to make authenticated requests
class AuthenticatedClient:
    """Wrapper for AsyncClient with authentication."""

    def __init__(self, client: AsyncClient, headers: dict[str, str]):
        self.client = client
        self.headers = headers

    async def get(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.get(url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.post(url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.put(url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.patch(url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Any:
        # DELETE with a JSON body needs the generic request method
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.request("DELETE", url, **kwargs)


@pytest.fixture
def authenticated_client(client: AsyncClient, auth_headers: dict[str, str]) -> AuthenticatedClient:
    """Create an authenticated test client."""
    return AuthenticatedClient(client, auth_headers)


@pytest.fixture
def admin_client(client: AsyncClient, admin_headers: dict[str, str]) -> AuthenticatedClient:
    """Create an authenticated admin test client."""
    return AuthenticatedClient(client, admin_headers)

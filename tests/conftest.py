"""
Pytest fixtures for test database, client, gateway, push provider and
authentication.

Each test gets a fresh schema. SQLite (aiosqlite, in-memory) is used unless
TEST_DATABASE_URL points at another async database.
"""

import json
import os
from typing import AsyncGenerator, Optional

# Settings are cached on first import, so the environment is fixed up front
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_BASE_URL", "https://app.example.com")
os.environ.setdefault("TOSS_CLIENT_KEY", "test_ck_client")
os.environ.setdefault("TOSS_SECRET_KEY", "test_sk_secret")
os.environ.setdefault("TOSS_WEBHOOK_SECRET", "whsec_test")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.db.base import Base
from app.db.session import get_db
from app.core.security import create_access_token
from app.infrastructure.toss_client import TossPaymentsClient
from app.models.fencing_class import Club, FencingClass
from app.models.user import User
from app.services.interfaces.push_provider import (
    MulticastRequest,
    MulticastResult,
    PushProvider,
    TokenResult,
)
from app.services.strategy_factory import get_gateway_client, set_push_provider

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
WEBHOOK_SECRET = os.environ["TOSS_WEBHOOK_SECRET"]


def make_test_engine():
    # One engine per test: async connections are bound to the test's event loop
    if TEST_DATABASE_URL.startswith("sqlite"):
        return create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, echo=False)


class FakePushProvider(PushProvider):
    """In-memory push provider. Tokens listed in `failures` fail with that code."""

    name = "fcm"
    permanent_error_codes = frozenset({
        "messaging/registration-token-not-registered",
        "messaging/invalid-registration-token",
    })

    def __init__(self):
        self.configured = True
        self.failures: dict[str, str] = {}
        self.raise_error: Optional[Exception] = None
        self.requests: list[MulticastRequest] = []

    def is_configured(self) -> bool:
        return self.configured

    async def send_multicast(self, request: MulticastRequest) -> MulticastResult:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        return MulticastResult(
            responses=[
                TokenResult(token=token, success=False, error_code=self.failures[token])
                if token in self.failures
                else TokenResult(token=token, success=True)
                for token in request.tokens
            ]
        )


class MockGateway:
    """
    Stand-in for the gateway confirm endpoint behind httpx.MockTransport.
    Succeeds by default, echoing the request like the real API does.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.status_code = 200
        self.body: Optional[dict] = None
        self.network_error = False

    def reject(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.body = {"code": code, "message": message}

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append({"payload": payload, "authorization": request.headers.get("authorization")})
        if self.network_error:
            raise httpx.ConnectError("connection refused", request=request)
        if self.body is not None:
            return httpx.Response(self.status_code, json=self.body)
        return httpx.Response(
            200,
            json={
                "paymentKey": payload["paymentKey"],
                "orderId": payload["orderId"],
                "totalAmount": payload["amount"],
                "status": "DONE",
                "method": "CARD",
                "approvedAt": "2026-10-19T10:00:00+09:00",
            },
        )


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    test_engine = make_test_engine()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def push_provider() -> FakePushProvider:
    provider = FakePushProvider()
    set_push_provider(provider)
    yield provider
    set_push_provider(None)


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    push_provider: FakePushProvider,
    gateway: MockGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        yield db_session

    def override_gateway():
        return TossPaymentsClient(
            secret_key=os.environ["TOSS_SECRET_KEY"],
            base_url="https://api.tosspayments.test",
            transport=httpx.MockTransport(gateway.handler),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_client] = override_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _create_user(db_session: AsyncSession, email: str, username: Optional[str]) -> User:
    user = User(email=email, username=username)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """The paying student."""
    return await _create_user(db_session, "student@example.com", "student")


@pytest_asyncio.fixture
async def coach(db_session: AsyncSession) -> User:
    """The managing party of the test classes."""
    return await _create_user(db_session, "coach@example.com", "coach")


@pytest_asyncio.fixture
async def club_owner(db_session: AsyncSession) -> User:
    return await _create_user(db_session, "owner@example.com", "owner")


def make_auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    return make_auth_headers(test_user)


@pytest.fixture
def coach_headers(coach: User) -> dict:
    return make_auth_headers(coach)


@pytest_asyncio.fixture
async def club(db_session: AsyncSession, club_owner: User) -> Club:
    club = Club(name="Seoul Fencing Club", owner_id=club_owner.id)
    db_session.add(club)
    await db_session.commit()
    await db_session.refresh(club)
    return club


async def _create_class(db_session: AsyncSession, **kwargs) -> FencingClass:
    fencing_class = FencingClass(**kwargs)
    db_session.add(fencing_class)
    await db_session.commit()
    await db_session.refresh(fencing_class)
    return fencing_class


@pytest_asyncio.fixture
async def paid_class(db_session: AsyncSession, coach: User, club: Club) -> FencingClass:
    """An open class priced at 50,000 KRW."""
    return await _create_class(
        db_session, title="Epee Fundamentals", price=50000, status="open", coach_id=coach.id, club_id=club.id
    )


@pytest_asyncio.fixture
async def free_class(db_session: AsyncSession, coach: User, club: Club) -> FencingClass:
    return await _create_class(
        db_session, title="Open Trial Session", price=0, status="open", coach_id=coach.id, club_id=club.id
    )


@pytest_asyncio.fixture
async def closed_class(db_session: AsyncSession, coach: User, club: Club) -> FencingClass:
    return await _create_class(
        db_session, title="Sabre Masterclass", price=30000, status="closed", coach_id=coach.id, club_id=club.id
    )


@pytest_asyncio.fixture
async def prepared_order(client: AsyncClient, auth_headers: dict, paid_class: FencingClass) -> dict:
    """Checkout payload for the paid class; ledger row is 'ready'."""
    response = await client.post(f"/api/v1/payments/classes/{paid_class.id}/prepare", headers=auth_headers)
    assert response.status_code == 200
    return response.json()["checkout"]

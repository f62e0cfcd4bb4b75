"""
Pytest configuration and fixtures.
"""
import json
import os
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

os.environ.setdefault("PESAFLUX_API_KEY", "PSFX_TEST_KEY")
os.environ.setdefault("PESAFLUX_EMAIL", "merchant@example.com")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stk_payments.api.main import app
from stk_payments.api.routes import get_pesaflux_client
from stk_payments.config import Settings
from stk_payments.database.connection import get_db
from stk_payments.database.models import Base, Transaction
from stk_payments.integrations.pesaflux_client import PesaFluxClient

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePesaFlux:
    """
    In-process stand-in for the PesaFlux API, served through httpx.MockTransport.

    ``status_responses`` maps request ids to a JSON body or a ready
    ``httpx.Response``; unknown ids get a 1037 (still pending) answer.
    ``errors`` is a queue of exceptions raised before answering.
    """

    def __init__(self) -> None:
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.initiate_response: Any = {
            "success": "200",
            "massage": "Request sent sucessfully.",
            "transaction_request_id": "SOFTPID123456",
        }
        self.initiate_status_code = 200
        self.status_responses: Dict[str, Any] = {}
        self.errors: List[Exception] = []

    def calls_to(self, endpoint: str) -> List[Dict[str, Any]]:
        return [body for path, body in self.requests if path.endswith(endpoint)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.url.path, body))

        if self.errors:
            raise self.errors.pop(0)

        if request.url.path.endswith("/initiatestk"):
            if isinstance(self.initiate_response, httpx.Response):
                return self.initiate_response
            return httpx.Response(self.initiate_status_code, json=self.initiate_response)

        if request.url.path.endswith("/checkstatus"):
            response = self.status_responses.get(
                body.get("transaction_request_id"),
                {"ResultCode": "1037", "ResultDesc": "DS timeout user cannot be reached"},
            )
            if isinstance(response, httpx.Response):
                return response
            return httpx.Response(200, json=response)

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        pesaflux_api_key="PSFX_TEST_KEY",
        pesaflux_email="merchant@example.com",
        pesaflux_base_url="https://pesaflux.test/v1",
        pesaflux_status_retries=1,
        database_url=TEST_DATABASE_URL,
        app_name="stk-payments-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def fake_pesaflux() -> FakePesaFlux:
    return FakePesaFlux()


@pytest_asyncio.fixture
async def pesaflux_client(
    test_settings: Settings, fake_pesaflux: FakePesaFlux
) -> AsyncGenerator[PesaFluxClient, Any]:
    """PesaFlux client wired to the fake provider."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_pesaflux.handler))
    client = PesaFluxClient(settings=test_settings, http_client=http_client)
    yield client
    await http_client.aclose()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Session factory over a fresh in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Insert a transaction row directly, bypassing the provider."""

    async def _make(
        transaction_request_id: str = "SOFTPID123456",
        status: str = "pending",
        receipt_number: Optional[str] = None,
        phone: str = "254712345678",
        amount: int = 139,
    ) -> Transaction:
        transaction = Transaction(
            transaction_request_id=transaction_request_id,
            phone=phone,
            amount=amount,
            email="applicant@example.com",
            reference=f"CRFF-{transaction_request_id}",
            status=status,
            receipt_number=receipt_number,
        )
        async with session_factory() as session:
            session.add(transaction)
            await session.commit()
        return transaction

    return _make


@pytest.fixture
def load_transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Read a transaction in a fresh session."""
    from sqlalchemy import select

    async def _load(transaction_request_id: str) -> Optional[Transaction]:
        async with session_factory() as session:
            result = await session.execute(
                select(Transaction).where(
                    Transaction.transaction_request_id == transaction_request_id
                )
            )
            return result.scalar_one_or_none()

    return _load


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    pesaflux_client: PesaFluxClient,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pesaflux_client] = lambda: pesaflux_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def initiate_payload() -> dict[str, Any]:
    """Sample initiation request data."""
    return {
        "msisdn": "0712345678",
        "amount": 139,
        "email": "applicant@example.com",
        "reference": "CRFF-1735000000000-123",
    }

"""
Test fixtures for the Card Issuer test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite
    database for each test
  - vault: A token vault with a throwaway Fernet key
  - pan_generator: A generator with a seeded RNG (reproducible numbers)
  - client: Async HTTP test client wired to all of the above
  - issuance_payload: Factory for valid issuance request bodies

Key design decisions:
  - The environment is prepared BEFORE card_issuer is imported: settings
    are read at import time and TOKEN_VAULT_KEY is required.
  - In-memory SQLite (sqlite+aiosqlite://) with StaticPool, so every
    session of a test (request sessions, dispatcher sessions) sees the
    same database. Each test gets a completely fresh one.
  - We override get_db, get_token_vault and get_pan_generator so the
    application code works exactly as it does in production.
  - ASGITransport does not run the lifespan, so the outbox dispatcher
    never starts in API tests; dispatcher tests drive it directly.
"""

import os
import random
import uuid

from cryptography.fernet import Fernet

os.environ.setdefault("TOKEN_VAULT_KEY", Fernet.generate_key().decode())
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["OUTBOX_DISPATCHER_ENABLED"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from card_issuer.database import Base, get_db  # noqa: E402
from card_issuer.dependencies import get_pan_generator, get_token_vault  # noqa: E402
from card_issuer.main import app  # noqa: E402
from card_issuer.security import InMemoryTokenVault  # noqa: E402
from card_issuer.services.pan_generator import PanGenerator  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine (used by the dispatcher)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def vault():
    return InMemoryTokenVault(Fernet.generate_key())


@pytest.fixture
def pan_generator():
    return PanGenerator(random.Random(20240601))


@pytest_asyncio.fixture
async def client(session_factory, vault, pan_generator):
    """
    Async HTTP test client with the test database, vault and generator injected.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_vault] = lambda: vault
    app.dependency_overrides[get_pan_generator] = lambda: pan_generator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def issuance_payload():
    """
    Build a valid issuance request body; keyword arguments override fields.

    Defaults: one customer, two cards, both delivery channels, $5,000.00 limit.
    """
    customer_id = str(uuid.uuid4())

    def build(**overrides):
        payload = {
            "customer_id": customer_id,
            "proposal_id": str(uuid.uuid4()),
            "account_id": str(uuid.uuid4()),
            "product_code": "VISA_GOLD",
            "card_count": 2,
            "credit_limit_cents": 500000,
            "delivery": {"physical": True, "virtual": True},
            "correlation_id": f"corr-{uuid.uuid4().hex[:8]}",
        }
        payload.update(overrides)
        return payload

    return build

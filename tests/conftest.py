"""
Shared fixtures.

Each test gets its own SQLite database file (aiosqlite) with a fresh schema.
The app's get_db dependency is overridden to use it, so the DATABASE_URL set
below is never connected to.
"""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="upi-bank-logs-"))
os.environ.setdefault("PIN_HASH_ITERATIONS", "1000")

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from upi_bank.api.deps import get_db
from upi_bank.app import app
from upi_bank.core.auth import hash_pin
from upi_bank.core.store import AccountStore
from upi_bank.db.session import create_tables

DEFAULT_PIN = "1234"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'upi_bank_test.db'}")
    await create_tables(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(session_factory):
    """
    Factory: await make_account("Asha", "9876543210", balance=Decimal("10000")).
    Commits in its own session and returns the account id.
    """

    async def _make(
        name="Asha Rao",
        phone="9876543210",
        email=None,
        pin=DEFAULT_PIN,
        balance=Decimal("10000.00"),
    ):
        async with session_factory() as session:
            account = await AccountStore(session).create(
                display_name=name,
                phone=phone,
                email=email or f"{phone}@example.com",
                pin_hash=hash_pin(pin),
                balance=balance,
            )
            await session.commit()
            return account.account_id

    return _make


@pytest.fixture
def balance_of(session_factory):
    async def _balance(account_id):
        async with session_factory() as session:
            account = await AccountStore(session).get(account_id)
            return account.balance

    return _balance


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.state.sessions.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
    app.state.sessions.clear()


@pytest_asyncio.fixture
async def auth_headers(client):
    """
    Factory: register an account over HTTP and return (account_id, headers).
    """

    async def _register(name="Asha Rao", phone="9876543210", pin=DEFAULT_PIN):
        resp = await client.post(
            "/api/auth/register",
            json={"name": name, "phone": phone, "email": f"{phone}@example.com", "pin": pin},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return body["account"]["account_id"], {"Authorization": f"Bearer {body['access_token']}"}

    return _register

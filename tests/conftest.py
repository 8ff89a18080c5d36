"""
Test fixtures for the Wallet API test suite.

This module provides shared fixtures used across all test files:

  - database: Fresh on-disk SQLite database for each test
  - db_session: An async session on that database
  - make_account: Opens a ledger account directly through the account store
  - client: Async HTTP test client (unauthenticated)
  - authenticated_client: Test client with a signed-up user and JWT
  - recipient: A second signed-up user to send money to

Key design decisions:
  - The transfer engine opens its own connections, separate from the
    request's session, so the database must be shared across connections.
    An in-memory SQLite database is private to one connection; each test
    therefore gets a file under pytest's tmp_path instead.
  - The application is built with create_app(database), so the code under
    test uses exactly the handle the test inspects.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from wallet.database import Database
from wallet.main import create_app
from wallet.services import account_store


@pytest_asyncio.fixture
async def database(tmp_path):
    """Create a fresh on-disk database with all tables for each test."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    """Provide an async session bound to the test database."""
    async with database.session() as session:
        yield session


@pytest_asyncio.fixture
async def make_account(database):
    """
    Factory that opens (and commits) an account with a given balance.

    Usage:
        await make_account("A", 1000)
    """

    async def _make(account_id: str, balance_cents: int, display_name: str | None = None):
        async with database.session() as session:
            account = await account_store.create_account(
                session, account_id, balance_cents, display_name=display_name
            )
            await session.commit()
            return account

    return _make


@pytest_asyncio.fixture
async def read_balance(database):
    """Factory that reads a committed balance in a fresh session."""

    async def _read(account_id: str) -> int:
        async with database.session() as session:
            return await account_store.get_balance(session, account_id)

    return _read


@pytest_asyncio.fixture
async def client(database):
    """Async HTTP test client bound to the test database."""
    app = create_app(database)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _signup(client, email: str, first_name: str, last_name: str) -> dict:
    response = await client.post(
        "/api/v1/user/signup",
        json={
            "email": email,
            "password": "SecurePass123!",
            "first_name": first_name,
            "last_name": last_name,
        },
    )
    assert response.status_code == 201, f"Signup failed: {response.text}"
    return response.json()


@pytest_asyncio.fixture
async def authenticated_client(client):
    """
    Test client with a signed-up user and JWT token.

    The user's account id is available as `client.account_id`.
    """
    data = await _signup(client, "testuser@example.com", "Test", "User")
    client.headers["Authorization"] = f"Bearer {data['token']}"
    client.account_id = data["account_id"]
    return client


@pytest_asyncio.fixture
async def recipient(client):
    """A second signed-up user (Jane Doe); returns the signup response body."""
    return await _signup(client, "jane.doe@example.com", "Jane", "Doe")


@pytest_asyncio.fixture
async def signup_user(client):
    """
    Factory that signs a user up through the real endpoint.

    Usage:
        data = await signup_user("bob@example.com", "Bob", "Stone")
    """

    async def _make(email: str, first_name: str = "Test", last_name: str = "User") -> dict:
        return await _signup(client, email, first_name, last_name)

    return _make

"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite database file (via aiosqlite) and a fresh
application built around explicit settings. One RSA key pair is generated
per session and handed to the app base64-encoded, exactly as it would be
supplied through the environment.
"""

import base64
from collections.abc import AsyncGenerator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.config.config import Settings
from tokenvault.db.session import initialize_database
from tokenvault.main import create_app

API = "/api/v1"
COOKIE = "refreshToken"
PASSWORD = "pw1234567"


def _b64_pem(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture(scope="session")
def rsa_keys() -> dict:
    """Generate one RSA key pair for the whole test session."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return {
        "private_key": key,
        "public_key": key.public_key(),
        "PRIVATE_KEY": _b64_pem(private_pem),
        "PUBLIC_KEY": _b64_pem(public_pem),
    }


@pytest.fixture
def settings(tmp_path, rsa_keys) -> Settings:
    return Settings(
        APP_ENV="production",
        DATABASE_URL_ASYNC=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        PRIVATE_KEY=rsa_keys["PRIVATE_KEY"],
        PUBLIC_KEY=rsa_keys["PUBLIC_KEY"],
        ACCESS_TOKEN_EXPIRE_MINUTES=15,
        REFRESH_TOKEN_EXPIRE_DAYS=7,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
async def app(settings: Settings) -> AsyncGenerator[FastAPI, None]:
    """
    Create the FastAPI app with its tables created.

    httpx's ASGITransport does not run lifespan events, so the database is
    initialized here instead.
    """
    application = create_app(settings)
    await initialize_database(application.state.engine)

    yield application

    await application.state.engine.dispose()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async HTTP client for testing API endpoints.

    Usage:
        async def test_endpoint(client):
            response = await client.get("/api/v1/health")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def db_session(app: FastAPI) -> AsyncGenerator[AsyncSession, None]:
    """A separate session on the app's database, for assertions and setup."""
    async with app.state.sessionmaker() as session:
        yield session


# =============================================================================
# Helpers
# =============================================================================


def user_payload(**overrides) -> dict:
    payload = {
        "username": "alice",
        "givenName": "Alice",
        "familyName": "Liddell",
        "email": "alice@example.com",
        "password": PASSWORD,
    }
    payload.update(overrides)
    return payload


def use_refresh_cookie(client: AsyncClient, value: str | None) -> None:
    """Make ``value`` the only refresh cookie the client will send."""
    client.cookies.clear()
    if value is not None:
        client.cookies.set(COOKIE, value)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def register(client: AsyncClient, **overrides) -> str:
    response = await client.post(f"{API}/register", json=user_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def login(client: AsyncClient, username="alice", password=PASSWORD) -> tuple[str, str]:
    """Log in and return ``(access_token, refresh_cookie_value)``."""
    response = await client.post(
        f"{API}/login", json={"username": username, "password": password}
    )
    assert response.status_code == 200, response.text
    return response.json()["access_token"], response.cookies[COOKIE]

"""
pytest configuration and shared fixtures for the Authentiscan API tests.

Key concern: tests must not require a live MongoDB, detector or Paystack
account. We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Overriding get_db with an in-memory FakeDB (tests/fakes.py).
  3. Running the detector and payment clients in mock mode; tests that
     need specific detector behaviour swap app.state.detector for a
     scripted fake.

Callers authenticate with HS256 tokens signed with the test secret, the
same way the identity provider's tokens are verified in production.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DETECTOR_MOCK_MODE", "true")
os.environ.setdefault("PAYMENTS_MOCK_MODE", "true")
os.environ.setdefault("IDENTITY_JWT_SECRET", "test-identity-secret")

from jose import jwt  # noqa: E402

from authentiscan.core.config import settings  # noqa: E402
from authentiscan.core.database import USERS, ensure_indexes  # noqa: E402
from fakes import FakeDB  # noqa: E402


def make_token(user_id: str, expires_in: timedelta = timedelta(minutes=10)) -> str:
    """Sign a token the way the identity provider would."""
    claims = {"sub": user_id, "exp": datetime.now(tz=timezone.utc) + expires_in}
    return jwt.encode(claims, settings.identity_jwt_secret, algorithm=settings.identity_jwt_algorithm)


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


async def seed_user(db, user_id: str, credits: int = 5, email: str | None = None) -> dict:
    now = datetime.now(tz=timezone.utc)
    doc = {
        "external_id": user_id,
        "email": email or f"{user_id}@example.com",
        "full_name": user_id.title(),
        "image_url": None,
        "credits": credits,
        "plan": "trial",
        "settled_references": [],
        "created_at": now,
        "updated_at": now,
    }
    await db[USERS].insert_one(doc)
    return doc


@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test and leave db_client
    disconnected, so /health reports "disconnected".
    """
    with (
        patch("authentiscan.main.connect_to_mongo", new_callable=AsyncMock),
        patch("authentiscan.main.close_mongo_connection", new_callable=AsyncMock),
    ):
        import authentiscan.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture()
async def fake_db():
    db = FakeDB()
    await ensure_indexes(db)
    return db


@pytest.fixture()
def app():
    """The FastAPI app with per-test cache and rate-limit state."""
    from authentiscan.core.rate_limit import limiter
    from authentiscan.main import app as fastapi_app

    fastapi_app.state.cache.clear()
    limiter.reset()
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.cache.clear()


@pytest.fixture()
async def client(app, mock_db):  # noqa: ARG001 (mock_db must run first)
    """HTTPX client without a database (DB endpoints answer 503)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def api_client(app, fake_db):
    """HTTPX client whose get_db dependency yields the in-memory FakeDB."""
    from authentiscan.core.database import get_db

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

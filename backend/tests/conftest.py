"""Shared fixtures for the pickup API tests.

Uses SQLite (aiosqlite) by default, so no PostgreSQL is required.
Set TEST_DATABASE_URL to override (e.g. for CI with real PostgreSQL).
"""

import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from app.database import Base  # noqa: E402

# ---------------------------------------------------------------------------
# Engine: SQLite in-memory with StaticPool (shared across connections)
# ---------------------------------------------------------------------------

_engine_kwargs = {}
if TEST_DATABASE_URL.startswith("sqlite"):
    _engine_kwargs = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }

_engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs)
_TestSession = async_sessionmaker(
    bind=_engine, class_=AsyncSession, expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Session-scoped: create / drop tables
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="session", autouse=True)
async def _setup_tables():
    import app.models  # noqa: F401  populate Base.metadata

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _engine.dispose()


# ---------------------------------------------------------------------------
# Reset rate-limiter counters before every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear in-memory rate-limit counters so tests never block each other."""
    from app.core.rate_limit import limiter

    storage = getattr(limiter, "_storage", None)
    if storage is not None and hasattr(storage, "reset"):
        storage.reset()


# ---------------------------------------------------------------------------
# Per-test session with rollback
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def db_session():
    async with _TestSession() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# HTTP test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db_session: AsyncSession):
    from app.database import get_db
    from app.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def user_factory(db_session: AsyncSession):
    """Return a coroutine creating a user directly in the database.

    The result dict has keys: user, user_id, headers, email.
    """
    from app.core.security import create_access_token, get_password_hash
    from app.models.user import User

    async def _create(role: str = "guardian", name: str | None = None) -> dict:
        suffix = uuid.uuid4().hex[:8]
        email = f"{role}-{suffix}@example.com"
        user = User(
            name=name or f"Test {role.title()} {suffix}",
            email=email,
            role=role,
            password_hash=get_password_hash("testpassword123"),
        )
        db_session.add(user)
        await db_session.flush()
        await db_session.refresh(user)

        token = create_access_token({"sub": str(user.id)})
        return {
            "user": user,
            "user_id": str(user.id),
            "headers": {"Authorization": f"Bearer {token}"},
            "email": email,
        }

    return _create


@pytest_asyncio.fixture()
async def admin(user_factory):
    return await user_factory("admin", "Admin User")


@pytest_asyncio.fixture()
async def staff(user_factory):
    return await user_factory("staff", "Gate Staff")


@pytest_asyncio.fixture()
async def registered_guardian(client: AsyncClient):
    """Register a guardian through the API and return context dict.

    Keys: headers, user_id, email, tokens
    """
    from app.core.security import decode_token

    suffix = uuid.uuid4().hex[:8]
    email = f"guardian-{suffix}@example.com"
    resp = await client.post("/api/v1/auth/register", json={
        "email": email,
        "password": "testpassword123",
        "name": "Pat Guardian",
        "phone": "+15550100",
    })
    assert resp.status_code == 200, resp.text
    tokens = resp.json()
    payload = decode_token(tokens["access_token"])

    return {
        "headers": {"Authorization": f"Bearer {tokens['access_token']}"},
        "user_id": payload["sub"],
        "email": email,
        "tokens": tokens,
    }


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def student_factory(client: AsyncClient, admin):
    """Return a coroutine creating a student through the admin API."""

    async def _create(guardian_ids: list[str] | None = None, **fields) -> dict:
        body = {
            "student_number": f"S-{uuid.uuid4().hex[:8]}",
            "first_name": "Alex",
            "last_name": "Student",
            "grade": "3",
            "date_of_birth": "2016-05-04",
            "guardian_ids": guardian_ids or [],
        }
        body.update(fields)
        resp = await client.post("/api/v1/students/", headers=admin["headers"], json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create

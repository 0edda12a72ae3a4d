"""
Pytest configuration and shared fixtures for testing.
Sets up a throwaway SQLite database, a forum context with a controllable clock,
and a test client.
"""

import os
import tempfile

# Set TEST_MODE before any app imports to disable rate limiting
os.environ["TEST_MODE"] = "1"

# Enable metrics endpoint for testing
os.environ["ENABLE_METRICS"] = "true"

# Read settings from the environment only; no Redis and no log file in tests
os.environ["SKIP_ENV_FILE"] = "1"
os.environ.setdefault("APP_ENV", "test")
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""
os.environ.setdefault("LOG_LEVEL", "WARNING")

# The app's module-level engine points at a scratch file; each test gets its own database
_SCRATCH_DIR = tempfile.mkdtemp(prefix="forum-tests-")
os.environ["DB_URL"] = f"sqlite+aiosqlite:///{_SCRATCH_DIR}/app.db"

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from forum.main import app
from forum import db as app_db
from forum.auth import hash_password
from forum.config import settings
from forum.context import build_context
from forum.db import Base, build_engine, make_session_factory
from forum.models import User

DEFAULT_PASSWORD = "password123"

# One bcrypt hash shared by users seeded straight into the database
SEEDED_PASSWORD_HASH = hash_password(DEFAULT_PASSWORD, settings.BCRYPT_ROUNDS)


class FakeClock:
    """Injectable clock; tests move time forward instead of sleeping."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture(scope="function")
async def test_db_engine(tmp_path):
    """Create a fresh database per test. TEST_DB_URL runs the suite on PostgreSQL."""
    url = os.getenv("TEST_DB_URL") or f"sqlite+aiosqlite:///{tmp_path}/forum.db"
    engine = build_engine(url, pooled=False)

    # Store original session maker and override it BEFORE creating tables
    original_session = app_db.async_session
    app_db.async_session = make_session_factory(engine)

    # Tests create tables directly for speed; production uses Alembic migrations
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    app_db.async_session = original_session
    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return make_session_factory(test_db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def forum_ctx(session_factory, clock):
    """Forum components wired to the test database and the fake clock."""
    return build_context(session_factory, settings, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def client(forum_ctx):
    """Create a test HTTP client bound to the test forum context."""
    original_forum = app.state.forum
    app.state.forum = forum_ctx
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0,
        follow_redirects=False,
    ) as ac:
        yield ac
    app.state.forum = original_forum


@pytest.fixture
def user_factory(session_factory):
    """Insert users directly, skipping the per-user bcrypt cost of signup."""
    counter = {"n": 0}

    async def make(name: str | None = None, email: str | None = None) -> int:
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        email = email or f"{name}@example.com"
        async with session_factory() as session:
            async with session.begin():
                user = User(name=name, email=email, hashed_password=SEEDED_PASSWORD_HASH)
                session.add(user)
                await session.flush()
                return user.id

    return make


@pytest.fixture
def session_cookie(forum_ctx):
    """Open a session for a user and return the Cookie header that carries it."""

    async def make(user_id: int, name: str) -> dict:
        token, _ = await forum_ctx.sessions.create_session(user_id, name)
        return {"Cookie": f"{settings.SESSION_COOKIE_NAME}={token}"}

    return make


@pytest.fixture
def post_factory(forum_ctx):
    async def make(author_id: int, author: str, title: str = "Hello", categories=None) -> int:
        return await forum_ctx.posts.create_post(
            author_id, author, title, "Some content", categories or ["Technology"]
        )

    return make


@pytest.fixture
def sample_user():
    """Sample signup form for testing."""
    return {
        "name": "alice",
        "email": "alice@example.com",
        "password": DEFAULT_PASSWORD,
    }

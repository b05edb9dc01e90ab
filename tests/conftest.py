"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite, shared through StaticPool so every async
  task sees the same connection (an in-memory database is connection-scoped).
- ``PRAGMA foreign_keys=ON`` on every connection: SQLite ignores FK clauses
  otherwise, and post/comment deletion relies on ``ON DELETE CASCADE``.
- The app's ``get_db`` is overridden with the test session factory, and
  ``get_view_tracker`` with in-memory trackers keyed by the session cookie,
  so view throttling is exercised without Redis.
- Tables are created before and dropped after each test.
- Redis is disabled with ``cache._redis = None``; every ``CacheManager``
  method is a no-op in that state.
"""
import pytest
import pytest_asyncio
from fastapi import Request
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blog_api.cache import cache
from blog_api.config import settings
from blog_api.database import Base, get_db
from blog_api.dependencies import get_view_tracker
from blog_api.main import app
from blog_api.middleware import install_query_counter
from blog_api.models import User, UserRole
from blog_api.views import InMemoryViewTracker

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine_test.sync_engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency overrides
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


view_trackers: dict[str, InMemoryViewTracker] = {}


def override_get_view_tracker(request: Request) -> InMemoryViewTracker:
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME, "anonymous")
    return view_trackers.setdefault(session_id, InMemoryViewTracker())


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_view_tracker] = override_get_view_tracker


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    view_trackers.clear()
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live session for service-level tests; nothing is committed."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def make_user(db: AsyncSession, username: str, role: UserRole = UserRole.READER) -> User:
    user = User(username=username, email=f"{username}@example.com", role=role)
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def users() -> dict[str, User]:
    """Committed admin, two authors and a reader for HTTP tests."""
    async with async_session_test() as session:
        created = {
            "admin": await make_user(session, "admin", UserRole.ADMIN),
            "author": await make_user(session, "author", UserRole.AUTHOR),
            "other_author": await make_user(session, "other_author", UserRole.AUTHOR),
            "reader": await make_user(session, "reader"),
        }
        await session.commit()
    return created


def as_user(user: User) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


@pytest.fixture
def auto_approve_off(monkeypatch):
    monkeypatch.setattr(settings, "COMMENTS_AUTO_APPROVE", False)

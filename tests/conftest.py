"""
Test infrastructure for the Feed API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI.  StaticPool forces every session onto the same
  connection, since an in-memory database is connection-scoped.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- All tables are created fresh before each test and dropped after.
- Redis is replaced by ``FakeRedis``, an in-memory implementation of the
  handful of commands the cache layer issues, installed as
  ``cache._redis`` before every test.  ``UnreachableRedis`` raises a
  connection error from every command, which is how the "cache down"
  behaviour is exercised.
"""
import fnmatch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from app.cache import cache
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.middleware import install_query_counter

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Redis doubles
# ---------------------------------------------------------------------------

class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` with decode_responses=True."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.commands: list[tuple] = []

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass

    async def get(self, key):
        self.commands.append(("get", key))
        return self.data.get(key)

    async def mget(self, keys):
        self.commands.append(("mget", tuple(keys)))
        return [self.data.get(k) for k in keys]

    async def set(self, key, value):
        self.commands.append(("set", key))
        self.data[key] = str(value)
        return True

    async def scan_iter(self, match=None):
        self.commands.append(("scan", match))
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def exists(self, *keys):
        return sum(1 for k in keys if k in self.data)

    async def _add(self, key, amount):
        current = self.data.get(key, "0")
        try:
            value = int(current) + amount
        except ValueError:
            raise ResponseError("value is not an integer or out of range") from None
        self.data[key] = str(value)
        return value

    async def incr(self, key):
        self.commands.append(("incr", key))
        return await self._add(key, 1)

    async def decr(self, key):
        self.commands.append(("decr", key))
        return await self._add(key, -1)

    async def delete(self, *keys):
        self.commands.append(("delete", keys))
        removed = 0
        for k in keys:
            if self.data.pop(k, None) is not None:
                removed += 1
        return removed


REFUSED = "Error 111 connecting to localhost:6379. Connection refused."


class UnreachableRedis:
    """Every command fails the way a dead Redis connection does."""

    def __getattr__(self, name):
        async def _fail(*args, **kwargs):
            raise RedisConnectionError(REFUSED)
        return _fail

    async def scan_iter(self, match=None):
        raise RedisConnectionError(REFUSED)
        yield


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def fake_redis():
    """A fresh in-memory cache for every test."""
    fake = FakeRedis()
    cache._redis = fake
    yield fake
    cache._redis = None


@pytest.fixture
def unreachable_cache(fake_redis):
    """Swap the cache for one where every command raises a connection error."""
    cache._redis = UnreachableRedis()
    yield
    cache._redis = None


@pytest.fixture
def integer_ids(monkeypatch):
    """Use auto-increment integers as external ids for the duration of a test."""
    monkeypatch.setattr(settings, "IDENTITY_SCHEME", "integer")


@pytest.fixture
def seed_script(monkeypatch):
    """``scripts/seed.py`` pointed at the test database."""
    from scripts import seed

    monkeypatch.setattr(seed, "engine", engine_test)
    monkeypatch.setattr(seed, "async_session", async_session_test)
    return seed


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Yield a live AsyncSession for service- and store-level tests."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

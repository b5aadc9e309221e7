import asyncio
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Configure test environment before the package builds its default engine
os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite:///./gamesocial-test.db')

# Ensure the repository root is importable when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from gamesocial.cache import CacheConfig, SocialCache  # noqa: E402
from gamesocial.crud import ProfileStore  # noqa: E402
from gamesocial.models import Base  # noqa: E402
from gamesocial.service import RelationshipService  # noqa: E402
from gamesocial.store import RelationshipStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    async def __call__(self, *user_ids):
        self.calls.append(user_ids)


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'social.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return RelationshipStore(session_factory)


@pytest.fixture
def profiles(session_factory):
    return ProfileStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return SocialCache(CacheConfig(), clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, cache, notifier):
    return RelationshipService(store, cache=cache, notifier=notifier)


@pytest.fixture
def make_user(profiles):
    async def _make(username: str, **kwargs):
        return await profiles.create_profile(username, **kwargs)
    return _make


@pytest_asyncio.fixture
async def alice(make_user):
    return await make_user('alice', display_name='Alice')


@pytest_asyncio.fixture
async def bob(make_user):
    return await make_user('bob', display_name='Bob')


@pytest_asyncio.fixture
async def carol(make_user):
    return await make_user('carol', display_name='Carol')


@pytest.fixture
def eventually():
    return wait_until

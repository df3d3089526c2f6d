import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from config import Settings
from database.connection import init_models
from tests.helpers import FakeNotifier, FakeProcessor


@pytest.fixture
def settings():
    return Settings(_env_file=None, DATABASE_URL="sqlite+aiosqlite://")


@pytest_asyncio.fixture(scope="function")
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_models(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def notifier():
    return FakeNotifier()

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from agenda.main import app
from agenda.database import Base, get_db
from agenda.api.deps import create_access_token, get_provider_lookup
from agenda.config import SchedulingConfig

from factories import lookup_for, make_provider, seed_booking

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test_agenda.db"


@pytest.fixture
def scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(timezone="America/Sao_Paulo", default_buffer_min=15, provider_timeout_seconds=1)


@pytest_asyncio.fixture
async def test_session_maker():
    """Fresh database per test, exposed as a session factory."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(test_session_maker):
    """Create test database and tables."""
    async with test_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def booking(test_db: AsyncSession) -> dict:
    """Branch open 09:00-18:00 every day, one staff member, a 60 min service."""
    return await seed_booking(test_db)


@pytest.fixture
def fake_provider():
    return make_provider("stripe")


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, fake_provider):
    """Create test client with overridden database and payment providers."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_lookup] = lambda: lookup_for(fake_provider)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(customer_id: str) -> dict:
    token = create_access_token({"sub": customer_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(booking) -> dict:
    """Bearer token of the seeded customer."""
    return auth_headers(booking["customer"].id)

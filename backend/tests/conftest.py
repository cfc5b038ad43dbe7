"""Shared test fixtures: per-test SQLite file, services container, test client."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from gatekeeper.config import Settings
from gatekeeper.container import Services, build_services
from gatekeeper.main import create_app
from gatekeeper.models.user import UserRole

ADMIN_PASSWORD = "AdminPass123!"
USER_PASSWORD = "SecurePass123!"


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings pointing at a throwaway database, with cheap Argon2 parameters."""
    values = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path}/test.db",
        "argon2_time_cost": 1,
        "argon2_memory_cost": 8,
        "argon2_parallelism": 1,
        "password_hash_workers": 2,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def make_services(settings: Settings) -> Services:
    engine = create_async_engine(settings.database_url, echo=False)

    # Enable foreign key enforcement in SQLite (off by default).
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    services = build_services(settings, engine=engine)
    await services.create_tables()
    return services


def make_client(settings: Settings, services: Services) -> AsyncClient:
    """Client over a fresh app. The lifespan does not run under ASGITransport,
    so the services are attached by hand."""
    app = create_app(settings)
    app.state.services = services
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def services(settings: Settings) -> Services:
    services = await make_services(settings)
    yield services
    await services.close()


@pytest_asyncio.fixture
async def db_session(services: Services) -> AsyncSession:
    """Yield a test DB session."""
    async with services.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(settings: Settings, services: Services) -> AsyncClient:
    """Yield an httpx AsyncClient wired to the test services."""
    async with make_client(settings, services) as c:
        yield c


@pytest_asyncio.fixture
async def admin_token(services: Services) -> str:
    """Session token for a freshly created admin."""
    async with services.session_factory() as db:
        await services.credentials.register(
            db,
            username="root",
            email="root@example.com",
            password=ADMIN_PASSWORD,
            role=UserRole.admin,
        )
        session, _ = await services.sessions.login(
            db, username="root", password=ADMIN_PASSWORD
        )
        await db.commit()
    return session.session_id


@pytest_asyncio.fixture
async def user_token(services: Services) -> str:
    """Session token for a regular user named alice."""
    async with services.session_factory() as db:
        session, _ = await services.sessions.register(
            db, username="alice", email="alice@example.com", password=USER_PASSWORD
        )
        await db.commit()
    return session.session_id


@pytest_asyncio.fixture
async def client_factory(tmp_path):
    """Build (client, services) pairs with overridden settings, each on its own database."""
    built: list[Services] = []

    async def _build(**overrides) -> tuple[AsyncClient, Services]:
        db_dir = tmp_path / f"custom{len(built)}"
        db_dir.mkdir()
        custom = make_settings(db_dir, **overrides)
        services = await make_services(custom)
        built.append(services)
        return make_client(custom, services), services

    yield _build
    for services in built:
        await services.close()

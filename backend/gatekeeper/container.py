"""Process-wide services, built once at startup and closed at shutdown."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gatekeeper.config import Settings
from gatekeeper.core.authenticator import RequestAuthenticator
from gatekeeper.core.passwords import PasswordHasher
from gatekeeper.core.rate_limit import RateLimiter
from gatekeeper.core.sweeper import PeriodicTask
from gatekeeper.models.base import Base
from gatekeeper.services.credential_store import CredentialStore
from gatekeeper.services.key_registry import KeyRegistry
from gatekeeper.services.session_manager import SessionManager

logger = logging.getLogger("gatekeeper")


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    hasher: PasswordHasher
    credentials: CredentialStore
    sessions: SessionManager
    keys: KeyRegistry
    rate_limiter: RateLimiter
    authenticator: RequestAuthenticator
    sweepers: list[PeriodicTask] = field(default_factory=list)

    async def create_tables(self) -> None:
        import gatekeeper.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables verified/created")

    async def purge_expired_sessions(self) -> int:
        async with self.session_factory() as db:
            deleted = await self.sessions.purge_expired(db)
            await db.commit()
        return deleted

    async def evict_idle_rate_limits(self) -> int:
        return self.rate_limiter.evict_idle()

    async def bootstrap_admin(self) -> None:
        if not self.settings.admin_username:
            logger.info("No ADMIN_USERNAME configured, skipping admin setup")
            return
        async with self.session_factory() as db:
            await self.credentials.ensure_admin(
                db,
                username=self.settings.admin_username,
                email=self.settings.admin_email,
                password=self.settings.admin_password,
            )
            await db.commit()

    def start(self) -> None:
        for task in self.sweepers:
            task.start()

    async def close(self) -> None:
        for task in self.sweepers:
            await task.stop()
        self.hasher.close()
        await self.engine.dispose()
        logger.info("Services shut down")


def build_services(settings: Settings, *, engine: AsyncEngine | None = None) -> Services:
    if engine is None:
        engine = create_async_engine(settings.database_url)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    hasher = PasswordHasher.from_settings(settings)
    credentials = CredentialStore.from_settings(settings, hasher)
    sessions = SessionManager.from_settings(settings, credentials)
    keys = KeyRegistry.from_settings(settings)
    rate_limiter = RateLimiter.from_settings(settings)
    authenticator = RequestAuthenticator(
        credentials,
        sessions,
        keys,
        trust_forwarded_for=settings.trust_forwarded_for,
    )

    services = Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        hasher=hasher,
        credentials=credentials,
        sessions=sessions,
        keys=keys,
        rate_limiter=rate_limiter,
        authenticator=authenticator,
    )
    services.sweepers = [
        PeriodicTask(
            "session-purge",
            settings.session_sweep_interval_seconds,
            services.purge_expired_sessions,
        ),
        PeriodicTask(
            "rate-limit-eviction",
            settings.rate_limit_sweep_interval_seconds,
            services.evict_idle_rate_limits,
        ),
    ]
    return services

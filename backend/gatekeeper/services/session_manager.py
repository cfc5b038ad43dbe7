"""Session issuance, validation and expiry.

A session is valid while now < expires_at. Validation that finds an
expired session deletes it on the spot; the periodic purge removes the
ones nobody comes back for.
"""

import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.config import Settings
from gatekeeper.core.errors import SessionExpired, SessionNotFound
from gatekeeper.models.base import as_utc, utcnow
from gatekeeper.models.session import Session
from gatekeeper.models.user import User
from gatekeeper.services import audit_service
from gatekeeper.services.credential_store import CredentialStore

logger = logging.getLogger("gatekeeper.auth")


def _generate_token() -> str:
    """256 bits from the OS CSPRNG."""
    return secrets.token_hex(32)


def session_ref(token: str) -> str:
    """Stable, non-secret reference to a session for logs and audit rows."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class SessionManager:
    def __init__(
        self,
        credentials: CredentialStore,
        *,
        ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.ttl = ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, credentials: CredentialStore) -> "SessionManager":
        return cls(credentials, ttl=timedelta(days=settings.session_ttl_days))

    async def create_session(self, db: AsyncSession, user_id: uuid.UUID) -> Session:
        now = self._clock()
        session = Session(
            session_id=_generate_token(),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        db.add(session)
        await db.flush()
        return session

    async def validate_session(self, db: AsyncSession, token: str) -> User:
        """Return the session's user.

        Raises SessionNotFound, or SessionExpired after deleting the
        expired row (committed before raising).
        """
        if not token:
            raise SessionNotFound()

        result = await db.execute(select(Session).where(Session.session_id == token))
        session = result.scalar_one_or_none()
        if session is None:
            raise SessionNotFound()

        if self._clock() >= as_utc(session.expires_at):
            await db.execute(delete(Session).where(Session.session_id == token))
            await db.commit()
            logger.info("Expired session removed: ref=%s", session_ref(token))
            raise SessionExpired()

        user = await self.credentials.get_user(db, session.user_id)
        if user is None:
            raise SessionNotFound()
        return user

    async def login(
        self,
        db: AsyncSession,
        *,
        username: str,
        password: str,
        ip_address: str | None = None,
    ) -> tuple[Session, User]:
        """Verify credentials, stamp last login, issue a session."""
        user = await self.credentials.verify_credentials(
            db, username=username, password=password
        )
        await self.credentials.record_login(db, user, self._clock())
        session = await self.create_session(db, user.id)

        await audit_service.log_event(
            db,
            user_id=user.id,
            event_type="auth.login",
            entity_type="Session",
            entity_id=session_ref(session.session_id),
            action="login",
            ip_address=ip_address,
        )
        logger.info("User logged in: id=%s", user.id)
        return session, user

    async def register(
        self,
        db: AsyncSession,
        *,
        username: str,
        email: str,
        password: str,
        ip_address: str | None = None,
    ) -> tuple[Session, User]:
        """Register and sign in immediately."""
        user = await self.credentials.register(
            db, username=username, email=email, password=password
        )
        await self.credentials.record_login(db, user, self._clock())
        session = await self.create_session(db, user.id)

        await audit_service.log_event(
            db,
            user_id=user.id,
            event_type="auth.register",
            entity_type="User",
            entity_id=user.id,
            action="register",
            detail={"username": user.username},
            ip_address=ip_address,
        )
        return session, user

    async def logout(
        self,
        db: AsyncSession,
        token: str,
        *,
        ip_address: str | None = None,
    ) -> bool:
        """Delete a session. Returns False if there was nothing to delete."""
        result = await db.execute(select(Session).where(Session.session_id == token))
        session = result.scalar_one_or_none()
        if session is None:
            return False

        user_id = session.user_id
        await db.delete(session)
        await db.flush()

        await audit_service.log_event(
            db,
            user_id=user_id,
            event_type="auth.logout",
            entity_type="Session",
            entity_id=session_ref(token),
            action="logout",
            ip_address=ip_address,
        )
        return True

    async def purge_expired(self, db: AsyncSession) -> int:
        """Delete every session past its expiry. Returns the number removed."""
        result = await db.execute(
            delete(Session)
            .where(Session.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Cleaned up %d expired sessions", deleted)
        return deleted

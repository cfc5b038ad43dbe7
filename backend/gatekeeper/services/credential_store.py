"""Credential store: user records and password verification.

Failures while verifying are always the same generic InvalidCredentials,
whether the user is unknown, the password is wrong or the stored hash is
unreadable. Unknown users still pay for one hash so timing matches.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.config import Settings
from gatekeeper.core.errors import (
    DuplicateIdentity,
    InvalidCredentials,
    MissingField,
    WeakPassword,
)
from gatekeeper.core.logging import sanitize_for_logging
from gatekeeper.core.passwords import PasswordHasher
from gatekeeper.models.user import User, UserRole

logger = logging.getLogger("gatekeeper.auth")


class CredentialStore:
    def __init__(self, hasher: PasswordHasher, *, min_password_length: int = 6):
        self.hasher = hasher
        self.min_password_length = min_password_length

    @classmethod
    def from_settings(cls, settings: Settings, hasher: PasswordHasher) -> "CredentialStore":
        return cls(hasher, min_password_length=settings.password_min_length)

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User | None:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_username(self, db: AsyncSession, username: str) -> User | None:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def _email_taken(self, db: AsyncSession, email: str) -> bool:
        result = await db.execute(select(User.id).where(User.email == email))
        return result.first() is not None

    async def register(
        self,
        db: AsyncSession,
        *,
        username: str,
        email: str,
        password: str,
        role: UserRole = UserRole.user,
    ) -> User:
        """Create a user with an Argon2id hash of ``password``.

        Raises MissingField, WeakPassword or DuplicateIdentity.
        """
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email or not password:
            raise MissingField("Username, email, and password are required")
        if len(password) < self.min_password_length:
            raise WeakPassword(
                f"Password must be at least {self.min_password_length} characters long"
            )

        if await self.get_by_username(db, username) is not None:
            raise DuplicateIdentity("Username already exists")
        if await self._email_taken(db, email):
            raise DuplicateIdentity("Email already exists")

        user = User(
            username=username,
            email=email,
            password_hash=await self.hasher.hash(password),
            role=role,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent registration
            await db.rollback()
            raise DuplicateIdentity("User already exists") from exc

        logger.info(
            "User registered: username=%s id=%s", sanitize_for_logging(username), user.id
        )
        return user

    async def verify_credentials(
        self,
        db: AsyncSession,
        *,
        username: str,
        password: str,
    ) -> User:
        username = (username or "").strip()
        if not username or not password:
            raise InvalidCredentials()

        user = await self.get_by_username(db, username)
        if user is None:
            await self.hasher.verify_dummy(password)
            raise InvalidCredentials()

        if not await self.hasher.verify(password, user.password_hash):
            logger.info("Failed login: username=%s", sanitize_for_logging(username))
            raise InvalidCredentials()

        if self.hasher.needs_rehash(user.password_hash):
            user.password_hash = await self.hasher.hash(password)
            await db.flush()
            logger.info("Password hash upgraded: id=%s", user.id)

        return user

    async def record_login(self, db: AsyncSession, user: User, when: datetime) -> None:
        user.last_login_at = when
        await db.flush()

    async def ensure_admin(
        self,
        db: AsyncSession,
        *,
        username: str,
        email: str | None,
        password: str | None,
    ) -> User:
        """Make sure ``username`` exists with the Admin role."""
        username = (username or "").strip()
        user = await self.get_by_username(db, username)
        if user is None:
            if not email or not password:
                raise MissingField(
                    "Admin user does not exist; admin email and password are required to create it"
                )
            user = await self.register(
                db, username=username, email=email, password=password, role=UserRole.admin
            )
            logger.info("Bootstrap admin created: username=%s", sanitize_for_logging(username))
        elif user.role != UserRole.admin:
            user.role = UserRole.admin
            await db.flush()
            logger.info("Granted admin role: username=%s", sanitize_for_logging(username))
        return user

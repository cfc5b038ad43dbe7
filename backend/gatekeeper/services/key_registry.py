"""API key issuance, validation, revocation and listing.

The raw key is handed back exactly once, from create_key. Only its SHA-256
digest is stored; keys already carry 256 bits of entropy, so a fast
collision-resistant digest is enough for lookup by exact match.
"""

import base64
import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.config import Settings
from gatekeeper.core.errors import (
    ExpiredApiKey,
    InvalidApiKey,
    KeyAlreadyRevoked,
    KeyNotFound,
    MissingKeyName,
    RevokedApiKey,
    UnknownUser,
)
from gatekeeper.core.logging import mask_key, sanitize_for_logging
from gatekeeper.models.api_key import ApiKey
from gatekeeper.models.base import as_utc, utcnow
from gatekeeper.models.user import User
from gatekeeper.services import audit_service

logger = logging.getLogger("gatekeeper.auth")


def hash_key(raw_key: str) -> str:
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class KeyRegistry:
    def __init__(
        self,
        *,
        prefix: str = "agp_live_",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.prefix = prefix
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyRegistry":
        return cls(prefix=settings.api_key_prefix)

    def generate_raw_key(self) -> str:
        return f"{self.prefix}{secrets.token_hex(32)}"

    async def create_key(
        self,
        db: AsyncSession,
        *,
        name: str,
        owner_user_id: uuid.UUID | None = None,
        expires_at: datetime | None = None,
        scopes: str | None = None,
        created_by: uuid.UUID | None = None,
        ip_address: str | None = None,
    ) -> tuple[str, ApiKey]:
        """Issue a key. Returns (raw_key, record); the raw key is not kept."""
        name = (name or "").strip()
        if not name:
            raise MissingKeyName()

        if owner_user_id is not None:
            owner = await db.execute(select(User.id).where(User.id == owner_user_id))
            if owner.first() is None:
                raise UnknownUser("Assigned user does not exist")

        raw_key = self.generate_raw_key()
        key = ApiKey(
            key_hash=hash_key(raw_key),
            name=name,
            user_id=owner_user_id,
            created_at=self._clock(),
            expires_at=as_utc(expires_at) if expires_at is not None else None,
            scopes=scopes or "",
        )
        db.add(key)
        await db.flush()

        await audit_service.log_event(
            db,
            user_id=created_by,
            event_type="api_key.create",
            entity_type="ApiKey",
            entity_id=key.id,
            action="create",
            detail={"name": name, "owner": str(owner_user_id) if owner_user_id else None},
            ip_address=ip_address,
        )
        logger.info("API key created: id=%s name=%s", key.id, sanitize_for_logging(name))
        return raw_key, key

    async def validate_key(self, db: AsyncSession, raw_key: str) -> ApiKey:
        """Look a key up by digest and stamp last use.

        Raises InvalidApiKey, RevokedApiKey or ExpiredApiKey.
        """
        if not raw_key:
            raise InvalidApiKey()

        result = await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_key(raw_key)))
        key = result.scalar_one_or_none()
        if key is None:
            raise InvalidApiKey()
        if key.is_revoked:
            logger.warning("Revoked API key presented: id=%s", key.id)
            raise RevokedApiKey()

        now = self._clock()
        if key.expires_at is not None and now >= as_utc(key.expires_at):
            logger.info("Expired API key presented: key=%s", mask_key(raw_key))
            raise ExpiredApiKey()

        key.last_used_at = now
        await db.flush()
        return key

    async def revoke_key(
        self,
        db: AsyncSession,
        key_id: uuid.UUID,
        *,
        revoked_by: uuid.UUID | None = None,
        ip_address: str | None = None,
    ) -> ApiKey:
        """Revoke once. A second revocation is an error and changes nothing."""
        result = await db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id, ApiKey.is_revoked.is_(False))
            .values(is_revoked=True, revoked_at=self._clock())
        )
        key = await db.get(ApiKey, key_id, populate_existing=True)
        if result.rowcount == 0:
            if key is None:
                raise KeyNotFound()
            raise KeyAlreadyRevoked()

        await audit_service.log_event(
            db,
            user_id=revoked_by,
            event_type="api_key.revoke",
            entity_type="ApiKey",
            entity_id=key_id,
            action="revoke",
            ip_address=ip_address,
        )
        logger.info("API key revoked: id=%s by=%s", key_id, revoked_by)
        return key

    async def list_keys(
        self,
        db: AsyncSession,
        *,
        owner_user_id: uuid.UUID | None = None,
        include_revoked: bool = False,
    ) -> list[ApiKey]:
        stmt = select(ApiKey).order_by(ApiKey.created_at.desc())
        if owner_user_id is not None:
            stmt = stmt.where(ApiKey.user_id == owner_user_id)
        if not include_revoked:
            stmt = stmt.where(ApiKey.is_revoked.is_(False))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def key_stats(self, db: AsyncSession) -> dict[str, int]:
        result = await db.execute(
            select(
                func.count(ApiKey.id),
                func.count(ApiKey.id).filter(ApiKey.is_revoked.is_(True)),
            )
        )
        total, revoked = result.one()
        return {"total": total, "active": total - revoked, "revoked": revoked}

"""Audit service: append-only auth event logging.

All writes are append-only. No update or delete methods are exposed.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.models.audit import AuditLogEvent


async def log_event(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID | str,
    action: str,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> AuditLogEvent:
    """Create an append-only audit log event."""
    event = AuditLogEvent(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(event)
    await db.flush()
    return event


async def get_events_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    event_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLogEvent]:
    """Retrieve audit events for a user, oldest first."""
    stmt = (
        select(AuditLogEvent)
        .where(AuditLogEvent.user_id == user_id)
        .order_by(AuditLogEvent.timestamp.asc())
    )
    if event_type is not None:
        stmt = stmt.where(AuditLogEvent.event_type == event_type)
    stmt = stmt.offset(offset).limit(limit)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_events_for_entity(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID | str,
) -> list[AuditLogEvent]:
    """All events recorded against one entity (a session, an API key), oldest first."""
    stmt = (
        select(AuditLogEvent)
        .where(
            AuditLogEvent.entity_type == entity_type,
            AuditLogEvent.entity_id == str(entity_id),
        )
        .order_by(AuditLogEvent.timestamp.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())

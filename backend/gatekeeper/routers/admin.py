"""Admin routes: API key management, the audit trail and system health.
Admin session required."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.container import Services
from gatekeeper.core.authenticator import Identity
from gatekeeper.dependencies import get_client_ip, get_db, get_services, require_admin
from gatekeeper.models.base import utcnow
from gatekeeper.schemas.api_key import (
    AdminHealth,
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyList,
    ApiKeyRead,
    HealthDetail,
    KeyCounts,
)
from gatekeeper.schemas.audit import AuditLogEventList, AuditLogEventRead
from gatekeeper.schemas.user import MessageResponse
from gatekeeper.services import audit_service

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/keys/create", response_model=ApiKeyCreated, status_code=201)
async def create_key(
    body: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    ip: str = Depends(get_client_ip),
    admin: Identity = Depends(require_admin),
):
    raw_key, key = await services.keys.create_key(
        db,
        name=body.name,
        owner_user_id=body.assign_to_user_id,
        expires_at=body.expires_at,
        scopes=body.scopes,
        created_by=admin.user_id,
        ip_address=ip,
    )
    await db.commit()
    return ApiKeyCreated(api_key=raw_key, key_id=key.id)


@router.get("/keys/list", response_model=ApiKeyList)
async def list_keys(
    user_id: uuid.UUID | None = Query(None, alias="userId"),
    include_revoked: bool = Query(False, alias="includeRevoked"),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    _admin: Identity = Depends(require_admin),
):
    keys = await services.keys.list_keys(
        db, owner_user_id=user_id, include_revoked=include_revoked
    )
    return ApiKeyList(keys=[ApiKeyRead.model_validate(k) for k in keys])


@router.post("/keys/revoke/{key_id}", response_model=MessageResponse)
async def revoke_key(
    key_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    ip: str = Depends(get_client_ip),
    admin: Identity = Depends(require_admin),
):
    await services.keys.revoke_key(db, key_id, revoked_by=admin.user_id, ip_address=ip)
    await db.commit()
    return MessageResponse(message="API key revoked successfully")


@router.get("/audit/users/{user_id}", response_model=AuditLogEventList)
async def user_audit(
    user_id: uuid.UUID,
    event_type: str | None = Query(None, alias="eventType"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    events = await audit_service.get_events_for_user(
        db, user_id, event_type=event_type, limit=limit, offset=offset
    )
    return AuditLogEventList(events=[AuditLogEventRead.model_validate(e) for e in events])


@router.get("/audit/keys/{key_id}", response_model=AuditLogEventList)
async def key_audit(
    key_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    """Lifecycle of one API key: creation and revocation."""
    events = await audit_service.get_events_for_entity(db, "ApiKey", key_id)
    return AuditLogEventList(events=[AuditLogEventRead.model_validate(e) for e in events])

@router.get("/health", response_model=AdminHealth)
async def health(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    _admin: Identity = Depends(require_admin),
):
    counts = await services.keys.key_stats(db)
    return AdminHealth(
        health=HealthDetail(
            timestamp=utcnow(),
            api_keys=KeyCounts(**counts),
            rate_limit_entries=len(services.rate_limiter),
        )
    )

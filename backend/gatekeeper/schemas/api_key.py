import uuid
from datetime import datetime

from pydantic import Field

from gatekeeper.schemas.user import CamelModel


class ApiKeyCreate(CamelModel):
    name: str = Field("", max_length=100)
    assign_to_user_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    scopes: str | None = Field(None, max_length=500)


class ApiKeyCreated(CamelModel):
    success: bool = True
    message: str = "API key created successfully"
    api_key: str
    key_id: uuid.UUID
    warning: str = "Save this API key securely. It will not be shown again."


class ApiKeyRead(CamelModel):
    """Key metadata. Neither the raw key nor its hash is ever exposed."""

    id: uuid.UUID
    name: str
    user_id: uuid.UUID | None
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None
    is_revoked: bool
    revoked_at: datetime | None
    scopes: str


class ApiKeyList(CamelModel):
    success: bool = True
    keys: list[ApiKeyRead]


class KeyCounts(CamelModel):
    total: int
    active: int
    revoked: int


class HealthDetail(CamelModel):
    status: str = "healthy"
    timestamp: datetime
    api_keys: KeyCounts
    rate_limit_entries: int


class AdminHealth(CamelModel):
    success: bool = True
    health: HealthDetail

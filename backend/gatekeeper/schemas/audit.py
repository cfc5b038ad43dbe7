import uuid
from datetime import datetime

from gatekeeper.schemas.user import CamelModel


class AuditLogEventRead(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID | None
    event_type: str
    entity_type: str
    entity_id: str
    action: str
    detail: dict | None = None
    timestamp: datetime
    ip_address: str | None = None


class AuditLogEventList(CamelModel):
    success: bool = True
    events: list[AuditLogEventRead]

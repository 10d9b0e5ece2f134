from datetime import datetime
from typing import Any, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from insign.models.audit import AuditAction


class AuditLogRead(BaseModel):
    id: UUID
    request_id: UUID
    participant_id: UUID | None
    action: AuditAction
    actor_id: UUID | None
    ip_address: str | None
    user_agent: str | None
    details: dict[str, Any] | None
    timestamp: datetime
    sequence: int

    model_config = ConfigDict(from_attributes=True)


class AuditTrail(BaseModel):
    request_id: UUID
    items: List[AuditLogRead]
    total: int


class AuditEventRead(AuditLogRead):
    request_title: str | None = None


class AuditEventList(BaseModel):
    items: List[AuditEventRead]
    total: int
    page: int
    page_size: int

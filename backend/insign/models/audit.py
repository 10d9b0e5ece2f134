from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from insign.models.base import UTCDateTime, UUIDModel, utcnow


class AuditAction(str, Enum):
    REQUEST_CREATED = "request_created"
    REQUEST_UPDATED = "request_updated"
    REQUEST_SENT = "request_sent"
    REQUEST_STARTED = "request_started"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_DECLINED = "request_declined"
    REQUEST_EXPIRED = "request_expired"
    REQUEST_COMPLETED = "request_completed"
    PARTICIPANT_NOTIFIED = "participant_notified"
    NOTIFICATION_FAILED = "notification_failed"
    PARTICIPANT_VIEWED = "participant_viewed"
    PARTICIPANT_SIGNED = "participant_signed"
    PARTICIPANT_DECLINED = "participant_declined"
    FIELD_ADDED = "field_added"
    FIELD_UPDATED = "field_updated"
    FIELD_REMOVED = "field_removed"
    FIELD_SIGNED = "field_signed"


class SignatureAuditLog(UUIDModel, table=True):
    """Append-only; rows are never updated or deleted while the request exists."""

    __tablename__ = "signature_audit_logs"

    request_id: UUID = Field(foreign_key="signature_requests.id", index=True)
    participant_id: UUID | None = Field(default=None, foreign_key="signature_participants.id")
    action: AuditAction = Field(index=True)
    actor_id: UUID | None = Field(default=None, foreign_key="users.id")
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
    timestamp: datetime = Field(default_factory=utcnow, nullable=False, index=True, sa_type=UTCDateTime)
    sequence: int = Field(default=0, nullable=False)

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Field

from insign.models.base import TimestampedModel, UTCDateTime, UUIDModel, utcnow


class WorkflowType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class SignatureRequestStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_REQUEST_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (SignatureRequestStatus.SENT, SignatureRequestStatus.IN_PROGRESS)

    def can_transition(self, target: "SignatureRequestStatus") -> bool:
        return target in _REQUEST_TRANSITIONS[self]


_TERMINAL_REQUEST_STATUSES = frozenset(
    {
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.DECLINED,
        SignatureRequestStatus.EXPIRED,
        SignatureRequestStatus.CANCELLED,
    }
)

_REQUEST_TRANSITIONS: dict[SignatureRequestStatus, frozenset[SignatureRequestStatus]] = {
    SignatureRequestStatus.DRAFT: frozenset(
        {SignatureRequestStatus.SENT, SignatureRequestStatus.CANCELLED}
    ),
    SignatureRequestStatus.SENT: frozenset(
        {
            SignatureRequestStatus.IN_PROGRESS,
            SignatureRequestStatus.COMPLETED,
            SignatureRequestStatus.DECLINED,
            SignatureRequestStatus.EXPIRED,
            SignatureRequestStatus.CANCELLED,
        }
    ),
    SignatureRequestStatus.IN_PROGRESS: frozenset(
        {
            SignatureRequestStatus.COMPLETED,
            SignatureRequestStatus.DECLINED,
            SignatureRequestStatus.EXPIRED,
            SignatureRequestStatus.CANCELLED,
        }
    ),
    SignatureRequestStatus.COMPLETED: frozenset(),
    SignatureRequestStatus.DECLINED: frozenset(),
    SignatureRequestStatus.EXPIRED: frozenset(),
    SignatureRequestStatus.CANCELLED: frozenset(),
}


class ParticipantRole(str, Enum):
    SIGNER = "signer"
    APPROVER = "approver"
    CC = "cc"

    @property
    def is_required(self) -> bool:
        # cc participants only receive copies; they never gate completion
        return self is not ParticipantRole.CC


class ParticipantStatus(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    COMPLETED = "completed"

    @property
    def is_done(self) -> bool:
        return self in (ParticipantStatus.SIGNED, ParticipantStatus.COMPLETED)

    @property
    def is_terminal(self) -> bool:
        return self.is_done or self is ParticipantStatus.DECLINED


class FieldType(str, Enum):
    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    TEXT = "text"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"

    @property
    def captures_image(self) -> bool:
        return self in (FieldType.SIGNATURE, FieldType.INITIALS)


class SignatureType(str, Enum):
    DRAWN = "drawn"
    TYPED = "typed"
    UPLOADED = "uploaded"


class SignatureRequest(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_requests"

    org_id: UUID = Field(foreign_key="organizations.id", index=True)
    document_id: UUID = Field(foreign_key="documents.id", index=True)
    title: str = Field(max_length=255)
    message: str | None = Field(default=None)
    workflow_type: WorkflowType = Field(default=WorkflowType.SEQUENTIAL)
    status: SignatureRequestStatus = Field(default=SignatureRequestStatus.DRAFT, index=True)
    expires_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    sent_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_by_id: UUID = Field(foreign_key="users.id")
    version: int = Field(default=0, nullable=False)

    def is_overdue(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Participant(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_participants"

    request_id: UUID = Field(foreign_key="signature_requests.id", index=True)
    email: str = Field(max_length=320)
    full_name: str | None = Field(default=None, max_length=255)
    role: ParticipantRole = Field(default=ParticipantRole.SIGNER)
    order_index: int = Field(default=0)
    status: ParticipantStatus = Field(default=ParticipantStatus.PENDING)
    access_token: str | None = Field(default=None, unique=True, index=True, max_length=128)
    notified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    viewed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    signed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    declined_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    decline_reason: str | None = Field(default=None)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None)


class SignatureField(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_fields"

    request_id: UUID = Field(foreign_key="signature_requests.id", index=True)
    participant_id: UUID = Field(foreign_key="signature_participants.id", index=True)
    field_type: FieldType = Field(default=FieldType.SIGNATURE)
    page_number: int = Field(default=1)
    x: float
    y: float
    width: float
    height: float
    required: bool = Field(default=True)
    label: str | None = Field(default=None, max_length=255)
    options: list | None = Field(default=None, sa_type=JSON)
    value: str | None = Field(default=None)


class Signature(UUIDModel, table=True):
    __tablename__ = "signatures"
    __table_args__ = (
        UniqueConstraint("field_id", "participant_id", name="uq_signatures_field_participant"),
    )

    request_id: UUID = Field(foreign_key="signature_requests.id", index=True)
    field_id: UUID = Field(foreign_key="signature_fields.id", index=True)
    participant_id: UUID = Field(foreign_key="signature_participants.id", index=True)
    signature_data: str
    signature_type: SignatureType
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=UTCDateTime)

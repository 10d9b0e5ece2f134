from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from insign.models.signature import (
    FieldType,
    ParticipantRole,
    ParticipantStatus,
    SignatureRequestStatus,
    SignatureType,
    WorkflowType,
)
from insign.schemas.common import IDModel, Timestamped
from insign.utils.email_validation import normalize_email


# -------------------------------------------------------------------------
# Participants
# -------------------------------------------------------------------------

class ParticipantCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    full_name: str | None = Field(default=None, max_length=255)
    role: ParticipantRole = ParticipantRole.SIGNER
    order_index: int = Field(default=0, ge=0)

    @field_validator("email")
    @classmethod
    def normalize_participant_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ParticipantRead(IDModel, Timestamped):
    request_id: UUID
    email: str
    full_name: str | None
    role: ParticipantRole
    order_index: int
    status: ParticipantStatus
    notified_at: datetime | None
    viewed_at: datetime | None
    signed_at: datetime | None
    declined_at: datetime | None
    decline_reason: str | None


# -------------------------------------------------------------------------
# Fields
# -------------------------------------------------------------------------

class FieldGeometry(BaseModel):
    field_type: FieldType = FieldType.SIGNATURE
    page_number: int = Field(default=1, ge=1)
    x: float = Field(ge=0.0, le=100.0)
    y: float = Field(ge=0.0, le=100.0)
    width: float = Field(ge=1.0, le=50.0)
    height: float = Field(ge=1.0, le=20.0)
    required: bool = True
    label: str | None = Field(default=None, max_length=255)
    options: List[str] | None = None

    @field_validator("options")
    @classmethod
    def strip_options(cls, value: List[str] | None) -> List[str] | None:
        if value is None:
            return None
        return [option.strip() for option in value if option and option.strip()]


class RequestFieldCreate(FieldGeometry):
    """Field declared together with a new request; ``participant_index`` points into its participant list."""

    participant_index: int = Field(ge=0)


class SignatureFieldCreate(FieldGeometry):
    participant_id: UUID


class SignatureFieldUpdate(BaseModel):
    participant_id: UUID | None = None
    field_type: FieldType | None = None
    page_number: int | None = Field(default=None, ge=1)
    x: float | None = Field(default=None, ge=0.0, le=100.0)
    y: float | None = Field(default=None, ge=0.0, le=100.0)
    width: float | None = Field(default=None, ge=1.0, le=50.0)
    height: float | None = Field(default=None, ge=1.0, le=20.0)
    required: bool | None = None
    label: str | None = Field(default=None, max_length=255)
    options: List[str] | None = None


class SignatureFieldRead(IDModel, Timestamped):
    request_id: UUID
    participant_id: UUID
    field_type: FieldType
    page_number: int
    x: float
    y: float
    width: float
    height: float
    required: bool
    label: str | None
    options: List[str] | None = None
    value: str | None = None


# -------------------------------------------------------------------------
# Requests
# -------------------------------------------------------------------------

class SignatureRequestCreate(BaseModel):
    document_id: UUID
    title: str = Field(min_length=1, max_length=255)
    message: str | None = None
    workflow_type: WorkflowType = WorkflowType.SEQUENTIAL
    expires_at: datetime | None = None
    participants: List[ParticipantCreate] = Field(default_factory=list)
    fields: List[RequestFieldCreate] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Title is required")
        return stripped


class SignatureRequestUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    message: str | None = None
    expires_at: datetime | None = None


class SignatureRequestRead(IDModel, Timestamped):
    org_id: UUID
    document_id: UUID
    title: str
    message: str | None
    workflow_type: WorkflowType
    status: SignatureRequestStatus
    expires_at: datetime | None
    sent_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_by_id: UUID


class SignatureRequestDetail(SignatureRequestRead):
    participants: List[ParticipantRead] = Field(default_factory=list)
    fields: List[SignatureFieldRead] = Field(default_factory=list)


# -------------------------------------------------------------------------
# Signatures
# -------------------------------------------------------------------------

class SignatureSubmit(BaseModel):
    field_id: UUID
    signature_data: str
    signature_type: SignatureType = SignatureType.DRAWN


class SignatureRead(IDModel):
    request_id: UUID
    field_id: UUID
    participant_id: UUID
    signature_type: SignatureType
    created_at: datetime


class DeclinePayload(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)

from typing import List
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from insign.models.signature import FieldType, ParticipantRole, WorkflowType
from insign.schemas.common import IDModel, Timestamped
from insign.schemas.signature import FieldGeometry


def _strip_required(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("Value is required")
    return stripped


class TemplateParticipantCreate(BaseModel):
    label: str = Field(min_length=1, max_length=255)
    role: ParticipantRole = ParticipantRole.SIGNER
    order_index: int = Field(default=0, ge=0)

    @field_validator("label")
    @classmethod
    def strip_label(cls, value: str) -> str:
        return _strip_required(value)


class TemplateFieldCreate(FieldGeometry):
    """Field bound to a participant slot by its label rather than to a person."""

    participant_label: str = Field(min_length=1, max_length=255)

    @field_validator("participant_label")
    @classmethod
    def strip_participant_label(cls, value: str) -> str:
        return _strip_required(value)


class SignatureTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    workflow_type: WorkflowType = WorkflowType.SEQUENTIAL
    message: str | None = None
    participants: List[TemplateParticipantCreate] = Field(default_factory=list)
    fields: List[TemplateFieldCreate] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return _strip_required(value)


class SignatureTemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    workflow_type: WorkflowType | None = None
    message: str | None = None


class TemplateParticipantRead(IDModel):
    label: str
    role: ParticipantRole
    order_index: int


class TemplateFieldRead(IDModel):
    participant_label: str
    field_type: FieldType
    page_number: int
    x: float
    y: float
    width: float
    height: float
    required: bool
    label: str | None
    options: List[str] | None = None


class SignatureTemplateRead(IDModel, Timestamped):
    org_id: UUID
    name: str
    description: str | None
    workflow_type: WorkflowType
    message: str | None
    created_by_id: UUID


class SignatureTemplateDetail(SignatureTemplateRead):
    participants: List[TemplateParticipantRead] = Field(default_factory=list)
    fields: List[TemplateFieldRead] = Field(default_factory=list)

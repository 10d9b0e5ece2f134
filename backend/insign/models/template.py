from uuid import UUID

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Field

from insign.models.base import TimestampedModel, UUIDModel
from insign.models.signature import FieldType, ParticipantRole, WorkflowType


class SignatureTemplate(UUIDModel, TimestampedModel, table=True):
    """Reusable participant slots and field layout for new signature requests."""

    __tablename__ = "signature_templates"

    org_id: UUID = Field(foreign_key="organizations.id", index=True)
    name: str = Field(max_length=255)
    description: str | None = Field(default=None)
    workflow_type: WorkflowType = Field(default=WorkflowType.SEQUENTIAL)
    message: str | None = Field(default=None)
    created_by_id: UUID = Field(foreign_key="users.id")


class TemplateParticipant(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_template_participants"
    __table_args__ = (
        UniqueConstraint("template_id", "label", name="uq_template_participants_label"),
    )

    template_id: UUID = Field(foreign_key="signature_templates.id", index=True)
    label: str = Field(max_length=255)
    role: ParticipantRole = Field(default=ParticipantRole.SIGNER)
    order_index: int = Field(default=0)


class TemplateField(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "signature_template_fields"

    template_id: UUID = Field(foreign_key="signature_templates.id", index=True)
    participant_label: str = Field(max_length=255)
    field_type: FieldType = Field(default=FieldType.SIGNATURE)
    page_number: int = Field(default=1)
    x: float
    y: float
    width: float
    height: float
    required: bool = Field(default=True)
    label: str | None = Field(default=None, max_length=255)
    options: list | None = Field(default=None, sa_type=JSON)

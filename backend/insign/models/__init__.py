# noqa: F401 to ensure models are imported for metadata
from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.document import Document
from insign.models.organization import Organization
from insign.models.signature import (
    FieldType,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    Signature,
    SignatureField,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureType,
    WorkflowType,
)
from insign.models.template import SignatureTemplate, TemplateField, TemplateParticipant
from insign.models.user import User

__all__ = [
    "AuditAction",
    "SignatureAuditLog",
    "Document",
    "Organization",
    "FieldType",
    "Participant",
    "ParticipantRole",
    "ParticipantStatus",
    "Signature",
    "SignatureField",
    "SignatureRequest",
    "SignatureRequestStatus",
    "SignatureType",
    "WorkflowType",
    "SignatureTemplate",
    "TemplateField",
    "TemplateParticipant",
    "User",
]

from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from insign.models.signature import SignatureRequestStatus, WorkflowType
from insign.schemas.signature import ParticipantRead, SignatureFieldRead, SignatureRead


class PublicRequestView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    message: str | None
    workflow_type: WorkflowType
    status: SignatureRequestStatus
    expires_at: datetime | None
    document_name: str | None = None


class SigningSession(BaseModel):
    """What a participant sees when opening their signing link."""

    access_token: str
    participant: ParticipantRead
    request: PublicRequestView
    fields: List[SignatureFieldRead]
    signatures: List[SignatureRead]
    can_sign: bool

"""
Persistence contract for signature requests.

The workflow engine only talks to this protocol. Every read-modify-write runs
inside ``transaction()``, and every transition claims the request first so two
concurrent transitions of one request can never both commit.
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import List, Optional, Protocol
from uuid import UUID

from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.signature import (
    Participant,
    Signature,
    SignatureField,
    SignatureRequest,
    SignatureRequestStatus,
)


class SignatureRequestRepository(Protocol):
    """
    Read/write contract for requests and the rows they own.

    Methods
    -------
    transaction() -> context manager
        Commit on success, roll back on any exception. Write conflicts detected
        by the store surface as ``ConflictError``.
    claim(request)
        Compare-and-set bump of ``request.version``; raises ``ConflictError``
        when another transaction changed the request since it was read.
    """

    def transaction(self) -> AbstractContextManager["SignatureRequestRepository"]:
        ...

    # requests
    def add_request(self, request: SignatureRequest) -> SignatureRequest:
        ...

    def get_request(self, request_id: UUID, org_id: UUID | None = None) -> Optional[SignatureRequest]:
        ...

    def get_request_for_update(self, request_id: UUID) -> Optional[SignatureRequest]:
        ...

    def list_requests(
        self, org_id: UUID, status: SignatureRequestStatus | None = None
    ) -> List[SignatureRequest]:
        ...

    def list_overdue_requests(self, now: datetime) -> List[SignatureRequest]:
        ...

    def claim(self, request: SignatureRequest) -> None:
        ...

    def save(self, entity) -> None:
        ...

    def delete_request(self, request: SignatureRequest) -> None:
        ...

    # participants
    def add_participant(self, participant: Participant) -> Participant:
        ...

    def list_participants(self, request_id: UUID) -> List[Participant]:
        ...

    def get_participant(self, participant_id: UUID) -> Optional[Participant]:
        ...

    def get_participant_by_token(self, token: str) -> Optional[Participant]:
        ...

    def token_exists(self, token: str) -> bool:
        ...

    # fields
    def add_field(self, field: SignatureField) -> SignatureField:
        ...

    def list_fields(self, request_id: UUID, participant_id: UUID | None = None) -> List[SignatureField]:
        ...

    def get_field(self, field_id: UUID) -> Optional[SignatureField]:
        ...

    def delete_field(self, field: SignatureField) -> None:
        ...

    # signatures
    def add_signature(self, signature: Signature) -> Signature:
        ...

    def list_signatures(self, request_id: UUID, participant_id: UUID | None = None) -> List[Signature]:
        ...

    def find_signature(self, field_id: UUID, participant_id: UUID) -> Optional[Signature]:
        ...

    # audit
    def append_audit(self, entry: SignatureAuditLog) -> SignatureAuditLog:
        ...

    def list_audit(self, request_id: UUID) -> List[SignatureAuditLog]:
        ...

    def list_org_audit(
        self,
        org_id: UUID,
        action: AuditAction | None = None,
        request_id: UUID | None = None,
        actor_id: UUID | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[List[tuple[SignatureAuditLog, str]], int]:
        """Newest first, each entry paired with its request title, plus the unpaged total."""
        ...

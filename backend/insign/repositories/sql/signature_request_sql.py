"""SQLModel-backed implementation of ``SignatureRequestRepository``."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select

from insign.core.errors import ConflictError
from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.signature import (
    Participant,
    Signature,
    SignatureField,
    SignatureRequest,
    SignatureRequestStatus,
)
from insign.repositories.sql.base import CONFLICT_MESSAGE, SqlRepository

_ACTIVE_STATUSES = (SignatureRequestStatus.SENT, SignatureRequestStatus.IN_PROGRESS)


class SqlSignatureRequestRepository(SqlRepository):
    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def add_request(self, request: SignatureRequest) -> SignatureRequest:
        self.session.add(request)
        self.session.flush()
        return request

    def get_request(self, request_id: UUID, org_id: UUID | None = None) -> Optional[SignatureRequest]:
        statement = select(SignatureRequest).where(SignatureRequest.id == request_id)
        if org_id is not None:
            statement = statement.where(SignatureRequest.org_id == org_id)
        return self.session.exec(statement).first()

    def get_request_for_update(self, request_id: UUID) -> Optional[SignatureRequest]:
        statement = (
            select(SignatureRequest)
            .where(SignatureRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(statement).first()

    def list_requests(
        self, org_id: UUID, status: SignatureRequestStatus | None = None
    ) -> List[SignatureRequest]:
        statement = select(SignatureRequest).where(SignatureRequest.org_id == org_id)
        if status is not None:
            statement = statement.where(SignatureRequest.status == status)
        statement = statement.order_by(SignatureRequest.created_at.desc())
        return list(self.session.exec(statement).all())

    def list_overdue_requests(self, now: datetime) -> List[SignatureRequest]:
        statement = (
            select(SignatureRequest)
            .where(SignatureRequest.status.in_(_ACTIVE_STATUSES))
            .where(SignatureRequest.expires_at.is_not(None))
            .where(SignatureRequest.expires_at <= now)
            .order_by(SignatureRequest.expires_at)
        )
        return list(self.session.exec(statement).all())

    def claim(self, request: SignatureRequest) -> None:
        statement = (
            update(SignatureRequest)
            .where(SignatureRequest.id == request.id)
            .where(SignatureRequest.version == request.version)
            .values(version=SignatureRequest.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        if result.rowcount != 1:
            raise ConflictError(CONFLICT_MESSAGE)
        set_committed_value(request, "version", request.version + 1)

    def delete_request(self, request: SignatureRequest) -> None:
        request_id = request.id
        self.session.execute(delete(Signature).where(Signature.request_id == request_id))
        self.session.execute(delete(SignatureAuditLog).where(SignatureAuditLog.request_id == request_id))
        self.session.execute(delete(SignatureField).where(SignatureField.request_id == request_id))
        self.session.execute(delete(Participant).where(Participant.request_id == request_id))
        self.session.delete(request)
        self.session.flush()

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def add_participant(self, participant: Participant) -> Participant:
        self.session.add(participant)
        self.session.flush()
        return participant

    def list_participants(self, request_id: UUID) -> List[Participant]:
        statement = (
            select(Participant)
            .where(Participant.request_id == request_id)
            .order_by(Participant.order_index, Participant.created_at)
        )
        return list(self.session.exec(statement).all())

    def get_participant(self, participant_id: UUID) -> Optional[Participant]:
        return self.session.get(Participant, participant_id)

    def get_participant_by_token(self, token: str) -> Optional[Participant]:
        statement = select(Participant).where(Participant.access_token == token)
        return self.session.exec(statement).first()

    def token_exists(self, token: str) -> bool:
        return self.get_participant_by_token(token) is not None

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def add_field(self, field: SignatureField) -> SignatureField:
        self.session.add(field)
        self.session.flush()
        return field

    def list_fields(self, request_id: UUID, participant_id: UUID | None = None) -> List[SignatureField]:
        statement = select(SignatureField).where(SignatureField.request_id == request_id)
        if participant_id is not None:
            statement = statement.where(SignatureField.participant_id == participant_id)
        statement = statement.order_by(
            SignatureField.page_number, SignatureField.y, SignatureField.x, SignatureField.created_at
        )
        return list(self.session.exec(statement).all())

    def get_field(self, field_id: UUID) -> Optional[SignatureField]:
        return self.session.get(SignatureField, field_id)

    def delete_field(self, field: SignatureField) -> None:
        self.session.delete(field)
        self.session.flush()

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def add_signature(self, signature: Signature) -> Signature:
        self.session.add(signature)
        # the unique (field_id, participant_id) constraint must fire inside the transaction
        self.session.flush()
        return signature

    def list_signatures(self, request_id: UUID, participant_id: UUID | None = None) -> List[Signature]:
        statement = select(Signature).where(Signature.request_id == request_id)
        if participant_id is not None:
            statement = statement.where(Signature.participant_id == participant_id)
        statement = statement.order_by(Signature.created_at)
        return list(self.session.exec(statement).all())

    def find_signature(self, field_id: UUID, participant_id: UUID) -> Optional[Signature]:
        statement = select(Signature).where(
            Signature.field_id == field_id,
            Signature.participant_id == participant_id,
        )
        return self.session.exec(statement).first()

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit(self, entry: SignatureAuditLog) -> SignatureAuditLog:
        statement = select(func.max(SignatureAuditLog.sequence)).where(
            SignatureAuditLog.request_id == entry.request_id
        )
        current = self.session.exec(statement).one()
        entry.sequence = (current or 0) + 1
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_audit(self, request_id: UUID) -> List[SignatureAuditLog]:
        statement = (
            select(SignatureAuditLog)
            .where(SignatureAuditLog.request_id == request_id)
            .order_by(SignatureAuditLog.timestamp, SignatureAuditLog.sequence)
        )
        return list(self.session.exec(statement).all())

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
        query = (
            select(SignatureAuditLog, SignatureRequest.title)
            .join(SignatureRequest, SignatureAuditLog.request_id == SignatureRequest.id)
            .where(SignatureRequest.org_id == org_id)
        )
        if action is not None:
            query = query.where(SignatureAuditLog.action == action)
        if request_id is not None:
            query = query.where(SignatureAuditLog.request_id == request_id)
        if actor_id is not None:
            query = query.where(SignatureAuditLog.actor_id == actor_id)
        if start_at is not None:
            query = query.where(SignatureAuditLog.timestamp >= start_at)
        if end_at is not None:
            query = query.where(SignatureAuditLog.timestamp <= end_at)

        total = self.session.exec(select(func.count()).select_from(query.subquery())).one()
        rows = self.session.exec(
            query.order_by(SignatureAuditLog.timestamp.desc(), SignatureAuditLog.sequence.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [(entry, title) for entry, title in rows], total

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from insign.core.errors import ConflictError
from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.signature import Participant, Signature, SignatureField, SignatureRequest, SignatureType
from insign.repositories.sql import SqlDocumentRepository, SqlSignatureRequestRepository


def _persist_request(session: Session, tenant: dict) -> SignatureRequest:
    request = SignatureRequest(
        org_id=tenant["org"].id,
        document_id=tenant["document"].id,
        title="Repository",
        created_by_id=tenant["user"].id,
    )
    session.add(request)
    session.commit()
    return request


def test_claim_detects_stale_version(db_engine, db_session: Session, tenant: dict) -> None:
    request_id = _persist_request(db_session, tenant).id

    with Session(db_engine) as first, Session(db_engine) as second:
        repo_a = SqlSignatureRequestRepository(first)
        repo_b = SqlSignatureRequestRepository(second)
        stale = repo_b.get_request(request_id)
        assert stale.version == 0

        with repo_a.transaction():
            fresh = repo_a.get_request(request_id)
            repo_a.claim(fresh)
        assert fresh.version == 1

        with pytest.raises(ConflictError):
            with repo_b.transaction():
                repo_b.claim(stale)


def test_duplicate_signature_violates_unique_constraint(db_session: Session, tenant: dict) -> None:
    request = _persist_request(db_session, tenant)
    repository = SqlSignatureRequestRepository(db_session)
    with repository.transaction():
        participant = repository.add_participant(Participant(request_id=request.id, email="alice@example.com"))
        field = repository.add_field(
            SignatureField(request_id=request.id, participant_id=participant.id, x=1, y=1, width=10, height=5)
        )
        repository.add_signature(
            Signature(
                request_id=request.id,
                field_id=field.id,
                participant_id=participant.id,
                signature_data="Alice",
                signature_type=SignatureType.TYPED,
            )
        )

    with pytest.raises(ConflictError):
        with repository.transaction():
            repository.add_signature(
                Signature(
                    request_id=request.id,
                    field_id=field.id,
                    participant_id=participant.id,
                    signature_data="Alice again",
                    signature_type=SignatureType.TYPED,
                )
            )
    assert len(repository.list_signatures(request.id)) == 1


def test_audit_sequence_is_per_request(db_session: Session, tenant: dict) -> None:
    first = _persist_request(db_session, tenant)
    second = _persist_request(db_session, tenant)
    repository = SqlSignatureRequestRepository(db_session)

    with repository.transaction():
        a1 = repository.append_audit(SignatureAuditLog(request_id=first.id, action=AuditAction.REQUEST_CREATED))
        b1 = repository.append_audit(SignatureAuditLog(request_id=second.id, action=AuditAction.REQUEST_CREATED))
        a2 = repository.append_audit(SignatureAuditLog(request_id=first.id, action=AuditAction.REQUEST_SENT))

    assert (a1.sequence, b1.sequence, a2.sequence) == (1, 1, 2)


def test_document_lookup_is_org_scoped(db_session: Session, tenant: dict, other_tenant: dict) -> None:
    documents = SqlDocumentRepository(db_session)
    assert documents.get_document(tenant["document"].id, tenant["org"].id) is not None
    assert documents.get_document(tenant["document"].id, other_tenant["org"].id) is None


def test_datetimes_are_stored_as_utc_and_read_back_aware(db_engine, db_session: Session, tenant: dict) -> None:
    deadline = datetime(2030, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    request = _persist_request(db_session, tenant)
    request.expires_at = deadline
    db_session.add(request)
    db_session.commit()

    with Session(db_engine) as other:
        loaded = SqlSignatureRequestRepository(other).get_request(request.id)
        assert loaded.expires_at == deadline
        assert loaded.expires_at.utcoffset() == timedelta(0)
        assert loaded.expires_at.hour == 10
        assert loaded.created_at.tzinfo is not None
        assert loaded.is_overdue(datetime(2030, 5, 1, 10, 0, tzinfo=timezone.utc))

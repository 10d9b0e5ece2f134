from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import Session

from insign.models.audit import AuditAction
from insign.models.signature import SignatureRequest
from insign.repositories.sql import SqlSignatureRequestRepository
from insign.schemas.signature import ParticipantCreate, SignatureRequestCreate
from insign.services.audit import AuditService
from tests.conftest import FrozenClock, build_service


@pytest.fixture()
def draft_request(db_session: Session, tenant: dict) -> SignatureRequest:
    request = SignatureRequest(
        org_id=tenant["org"].id,
        document_id=tenant["document"].id,
        title="Audit me",
        created_by_id=tenant["user"].id,
    )
    db_session.add(request)
    db_session.commit()
    return request


def test_audit_service_records_entries_in_order(db_session: Session, draft_request: SignatureRequest) -> None:
    clock = FrozenClock()
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository, clock=clock)

    with repository.transaction():
        service.record(draft_request.id, AuditAction.REQUEST_CREATED, metadata={"title": "Audit me"})
        service.record(draft_request.id, AuditAction.REQUEST_UPDATED, metadata={"title": "Audit me too"})
    clock.advance(seconds=1)
    with repository.transaction():
        service.record(draft_request.id, AuditAction.REQUEST_SENT, ip_address="127.0.0.1", user_agent="pytest")

    trail = service.trail(draft_request.id)
    assert [entry.action for entry in trail] == [
        AuditAction.REQUEST_CREATED,
        AuditAction.REQUEST_UPDATED,
        AuditAction.REQUEST_SENT,
    ]
    assert [entry.sequence for entry in trail] == [1, 2, 3]
    assert trail[0].timestamp == trail[1].timestamp < trail[2].timestamp
    assert trail[2].ip_address == "127.0.0.1"


def test_audit_entries_roll_back_with_the_transaction(db_session: Session, draft_request: SignatureRequest) -> None:
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository)

    with pytest.raises(RuntimeError):
        with repository.transaction():
            service.record(draft_request.id, AuditAction.REQUEST_SENT)
            raise RuntimeError("boom")

    assert service.trail(draft_request.id) == []


def test_audit_metadata_never_contains_tokens(db_session: Session, draft_request: SignatureRequest) -> None:
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository)
    participant_id = uuid4()

    with repository.transaction():
        entry = service.record(
            draft_request.id,
            AuditAction.PARTICIPANT_NOTIFIED,
            metadata={
                "participant_email": "alice@example.com",
                "access_token": "secret-value",
                "nested": {"Token": "x", "participant_id": participant_id},
            },
        )

    assert entry.details == {
        "participant_email": "alice@example.com",
        "nested": {"participant_id": str(participant_id)},
    }


def test_workflow_audit_trail_has_no_token_values(db_session: Session, tenant: dict, dispatcher) -> None:
    service = build_service(db_session, dispatcher)
    request = service.create_request(
        tenant["ctx"],
        SignatureRequestCreate(
            document_id=tenant["document"].id,
            title="Lease",
            participants=[ParticipantCreate(email="alice@example.com")],
        ),
    )
    service.send(tenant["ctx"], request.id)
    token = service.list_participants(tenant["ctx"], request.id)[0].access_token
    service.resolve_access_token(token)

    trail = service.get_audit_trail(tenant["ctx"], request.id)
    assert [entry.action for entry in trail] == [
        AuditAction.REQUEST_CREATED,
        AuditAction.REQUEST_SENT,
        AuditAction.PARTICIPANT_NOTIFIED,
        AuditAction.PARTICIPANT_VIEWED,
    ]
    for entry in trail:
        assert token not in repr(entry.details)
    assert trail[1].details == {"workflow_type": "sequential", "participant_count": 1, "notified_count": 1}


def _titled_request(session: Session, tenant: dict, title: str) -> SignatureRequest:
    request = SignatureRequest(
        org_id=tenant["org"].id,
        document_id=tenant["document"].id,
        title=title,
        created_by_id=tenant["user"].id,
    )
    session.add(request)
    session.commit()
    return request


def test_list_events_is_org_scoped_newest_first_and_paged(
    db_session: Session, tenant: dict, other_tenant: dict
) -> None:
    clock = FrozenClock()
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository, clock=clock)
    ours = _titled_request(db_session, tenant, "Ours")
    theirs = _titled_request(db_session, other_tenant, "Theirs")

    with repository.transaction():
        service.record(ours.id, AuditAction.REQUEST_CREATED)
    clock.advance(minutes=1)
    with repository.transaction():
        service.record(ours.id, AuditAction.REQUEST_SENT, actor_id=tenant["user"].id)
        service.record(theirs.id, AuditAction.REQUEST_CREATED)
    clock.advance(minutes=1)
    with repository.transaction():
        service.record(ours.id, AuditAction.PARTICIPANT_VIEWED)

    items, total = service.list_events(tenant["org"].id)
    assert total == 3
    assert [entry.action for entry, _ in items] == [
        AuditAction.PARTICIPANT_VIEWED,
        AuditAction.REQUEST_SENT,
        AuditAction.REQUEST_CREATED,
    ]
    assert {title for _, title in items} == {"Ours"}

    second_page, total = service.list_events(tenant["org"].id, page=2, page_size=2)
    assert total == 3
    assert [entry.action for entry, _ in second_page] == [AuditAction.REQUEST_CREATED]


def test_list_events_filters(db_session: Session, tenant: dict) -> None:
    clock = FrozenClock()
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository, clock=clock)
    first = _titled_request(db_session, tenant, "First")
    second = _titled_request(db_session, tenant, "Second")
    start = clock.now

    with repository.transaction():
        service.record(first.id, AuditAction.REQUEST_CREATED, actor_id=tenant["user"].id)
    clock.advance(minutes=1)
    with repository.transaction():
        service.record(second.id, AuditAction.REQUEST_CREATED)
        service.record(second.id, AuditAction.REQUEST_SENT)
    clock.advance(minutes=1)
    with repository.transaction():
        service.record(first.id, AuditAction.REQUEST_CANCELLED)

    org_id = tenant["org"].id
    created, total = service.list_events(org_id, action=AuditAction.REQUEST_CREATED)
    assert total == 2
    assert [title for _, title in created] == ["Second", "First"]

    by_request, total = service.list_events(org_id, request_id=second.id)
    assert total == 2
    assert {entry.request_id for entry, _ in by_request} == {second.id}

    by_actor, total = service.list_events(org_id, actor_id=tenant["user"].id)
    assert [entry.request_id for entry, _ in by_actor] == [first.id]

    window, total = service.list_events(
        org_id, start_at=start + timedelta(seconds=30), end_at=start + timedelta(seconds=90)
    )
    assert total == 2
    assert {entry.request_id for entry, _ in window} == {second.id}


def test_list_events_clamps_paging(db_session: Session, tenant: dict, draft_request: SignatureRequest) -> None:
    repository = SqlSignatureRequestRepository(db_session)
    service = AuditService(repository)
    with repository.transaction():
        service.record(draft_request.id, AuditAction.REQUEST_CREATED)

    items, total = service.list_events(tenant["org"].id, page=0, page_size=10_000)
    assert total == 1
    assert len(items) == 1

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import Session, SQLModel, create_engine, select

from insign.api.deps import get_db, get_notification_dispatcher
from insign.core.config import settings
from insign.main import app
from insign.models.base import utcnow
from insign.models.document import Document
from insign.models.organization import Organization
from insign.models.signature import Participant
from insign.models.user import User
from insign.repositories.sql import SqlDocumentRepository, SqlSignatureRequestRepository
from insign.services.audit import AuditService
from insign.services.tokens import AccessTokenGateway
from insign.services.workflow import CallerContext, SignatureWorkflowService
from insign.utils.security import TokenType


class RecordingDispatcher:
    """In-memory dispatcher recording ``(email, event, signing_url)`` tuples."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_for = fail_for or set()

    def notify(self, participant, request, event, signing_url=None) -> bool:
        self.calls.append((participant.email, event.value, signing_url))
        if participant.email in self.fail_for:
            raise RuntimeError("smtp down")
        return True

    def emails_for(self, event: str) -> list[str]:
        return [email for email, name, _ in self.calls if name == event]


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def db_engine(tmp_path):
    db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(bind=engine)

    def override_get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield engine

    app.dependency_overrides.pop(get_db, None)
    engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def client(db_engine, dispatcher) -> TestClient:
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.pop(get_notification_dispatcher, None)


def create_tenant(session: Session, name: str = "Acme") -> dict:
    org = Organization(name=name, domain=f"{uuid.uuid4().hex[:8]}.example.com")
    user = User(org_id=org.id, email=f"owner_{uuid.uuid4().hex[:6]}@example.com", full_name="Owner")
    document = Document(
        org_id=org.id,
        name="Contract.pdf",
        storage_path=f"{org.id}/contract.pdf",
        created_by_id=user.id,
    )
    session.add_all([org, user, document])
    session.commit()
    return {
        "org": org,
        "user": user,
        "document": document,
        "ctx": CallerContext(org_id=org.id, user_id=user.id),
    }


@pytest.fixture()
def tenant(db_session: Session) -> dict:
    return create_tenant(db_session)


@pytest.fixture()
def other_tenant(db_session: Session) -> dict:
    return create_tenant(db_session, name="Globex")


def build_service(session: Session, dispatcher=None, clock=None) -> SignatureWorkflowService:
    repository = SqlSignatureRequestRepository(session)
    kwargs = {"clock": clock} if clock is not None else {}
    return SignatureWorkflowService(
        repository,
        SqlDocumentRepository(session),
        dispatcher=dispatcher or RecordingDispatcher(),
        tokens=AccessTokenGateway(repository, public_app_url="https://sign.example.com"),
        audit=AuditService(repository, **kwargs),
        **kwargs,
    )


@pytest.fixture()
def service(db_session: Session, dispatcher: RecordingDispatcher, clock: FrozenClock) -> SignatureWorkflowService:
    return build_service(db_session, dispatcher, clock)


def token_for(session: Session, request_id: uuid.UUID | str, email: str) -> str:
    request_id = uuid.UUID(str(request_id))
    statement = select(Participant).where(Participant.request_id == request_id, Participant.email == email)
    participant = session.exec(statement).first()
    assert participant is not None and participant.access_token
    return participant.access_token


def issue_access_token(subject: str, org_id: str | None, expires_in: timedelta = timedelta(minutes=30)) -> str:
    """Token as the authentication service would issue it for ``subject``."""
    claims = {
        "sub": subject,
        "org_id": org_id,
        "exp": datetime.now(timezone.utc) + expires_in,
        "token_type": TokenType.ACCESS.value,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(user: User) -> dict[str, str]:
    token = issue_access_token(str(user.id), str(user.org_id))
    return {"Authorization": f"Bearer {token}"}

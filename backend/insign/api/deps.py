from typing import Annotated, Generator
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session, select

from insign.core.config import settings
from insign.db.session import get_session
from insign.models.user import User
from insign.repositories.sql import (
    SqlDocumentRepository,
    SqlSignatureRequestRepository,
    SqlSignatureTemplateRepository,
)
from insign.services.actions import SignatureActions, TemplateActions
from insign.services.audit import AuditService
from insign.services.notification import NotificationDispatcher, build_default_dispatcher
from insign.services.templates import SignatureTemplateService
from insign.services.tokens import AccessTokenGateway
from insign.services.workflow import CallerContext, SignatureWorkflowService
from insign.utils.security import TokenType, decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.auth_token_url)


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_db)],
) -> CallerContext:
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if payload.get("token_type") != TokenType.ACCESS.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    user = session.exec(select(User).where(User.id == user_id)).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    claimed_org = payload.get("org_id")
    if claimed_org is not None and str(claimed_org) != str(user.org_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token organization")

    return CallerContext(org_id=user.org_id, user_id=user.id)


def get_notification_dispatcher() -> NotificationDispatcher:
    return build_default_dispatcher()


def get_signature_actions(
    session: Annotated[Session, Depends(get_db)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
) -> SignatureActions:
    repository = SqlSignatureRequestRepository(session)
    workflow = SignatureWorkflowService(
        repository,
        SqlDocumentRepository(session),
        dispatcher=dispatcher,
        tokens=AccessTokenGateway(repository),
        audit=AuditService(repository),
    )
    return SignatureActions(workflow)


def get_template_actions(session: Annotated[Session, Depends(get_db)]) -> TemplateActions:
    return TemplateActions(SignatureTemplateService(SqlSignatureTemplateRepository(session)))

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from insign.api.deps import get_current_user, get_signature_actions
from insign.api.results import unwrap
from insign.models.audit import AuditAction
from insign.schemas.audit import AuditEventList
from insign.services.actions import SignatureActions
from insign.services.workflow import CallerContext

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/events", response_model=AuditEventList)
def list_audit_events(
    ctx: Annotated[CallerContext, Depends(get_current_user)],
    actions: Annotated[SignatureActions, Depends(get_signature_actions)],
    action: AuditAction | None = Query(default=None),
    request_id: UUID | None = Query(default=None),
    actor_id: UUID | None = Query(default=None),
    start_at: datetime | None = Query(default=None),
    end_at: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
) -> AuditEventList:
    return unwrap(
        actions.list_audit_events(
            ctx,
            action=action,
            request_id=request_id,
            actor_id=actor_id,
            start_at=start_at,
            end_at=end_at,
            page=page,
            page_size=page_size,
        )
    )

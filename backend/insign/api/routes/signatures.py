from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from insign.api.deps import get_current_user, get_signature_actions
from insign.api.results import unwrap
from insign.models.signature import SignatureRequestStatus
from insign.schemas.audit import AuditTrail
from insign.schemas.signature import (
    SignatureFieldCreate,
    SignatureFieldRead,
    SignatureFieldUpdate,
    SignatureRequestCreate,
    SignatureRequestDetail,
    SignatureRequestRead,
    SignatureRequestUpdate,
)
from insign.services.actions import SignatureActions
from insign.services.workflow import CallerContext

router = APIRouter(prefix="/signature-requests", tags=["signature-requests"])

Caller = Annotated[CallerContext, Depends(get_current_user)]
Actions = Annotated[SignatureActions, Depends(get_signature_actions)]


@router.get("", response_model=List[SignatureRequestRead])
def list_signature_requests(
    ctx: Caller,
    actions: Actions,
    status_filter: SignatureRequestStatus | None = Query(default=None, alias="status"),
) -> List[SignatureRequestRead]:
    return unwrap(actions.list_requests(ctx, status_filter))


@router.post("", response_model=SignatureRequestDetail, status_code=status.HTTP_201_CREATED)
def create_signature_request(
    payload: SignatureRequestCreate, ctx: Caller, actions: Actions
) -> SignatureRequestDetail:
    return unwrap(actions.create_request(ctx, payload))


@router.get("/{request_id}", response_model=SignatureRequestDetail)
def get_signature_request(request_id: UUID, ctx: Caller, actions: Actions) -> SignatureRequestDetail:
    return unwrap(actions.get_request(ctx, request_id))


@router.patch("/{request_id}", response_model=SignatureRequestRead)
def update_signature_request(
    request_id: UUID, payload: SignatureRequestUpdate, ctx: Caller, actions: Actions
) -> SignatureRequestRead:
    return unwrap(actions.update_request(ctx, request_id, payload))


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_signature_request(request_id: UUID, ctx: Caller, actions: Actions) -> Response:
    unwrap(actions.delete(ctx, request_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{request_id}/send", response_model=SignatureRequestRead)
def send_signature_request(request_id: UUID, ctx: Caller, actions: Actions) -> SignatureRequestRead:
    return unwrap(actions.send(ctx, request_id))


@router.post("/{request_id}/cancel", response_model=SignatureRequestRead)
def cancel_signature_request(request_id: UUID, ctx: Caller, actions: Actions) -> SignatureRequestRead:
    return unwrap(actions.cancel(ctx, request_id))


@router.post("/{request_id}/resend")
def resend_signature_notifications(request_id: UUID, ctx: Caller, actions: Actions) -> dict[str, int]:
    return {"notified": unwrap(actions.resend_notifications(ctx, request_id))}


@router.get("/{request_id}/fields", response_model=List[SignatureFieldRead])
def list_signature_fields(request_id: UUID, ctx: Caller, actions: Actions) -> List[SignatureFieldRead]:
    return unwrap(actions.list_fields(ctx, request_id))


@router.post("/{request_id}/fields", response_model=SignatureFieldRead, status_code=status.HTTP_201_CREATED)
def add_signature_field(
    request_id: UUID, payload: SignatureFieldCreate, ctx: Caller, actions: Actions
) -> SignatureFieldRead:
    return unwrap(actions.add_field(ctx, request_id, payload))


@router.patch("/fields/{field_id}", response_model=SignatureFieldRead)
def update_signature_field(
    field_id: UUID, payload: SignatureFieldUpdate, ctx: Caller, actions: Actions
) -> SignatureFieldRead:
    return unwrap(actions.update_field(ctx, field_id, payload))


@router.delete("/fields/{field_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_signature_field(field_id: UUID, ctx: Caller, actions: Actions) -> Response:
    unwrap(actions.delete_field(ctx, field_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{request_id}/audit", response_model=AuditTrail)
def get_signature_audit_trail(request_id: UUID, ctx: Caller, actions: Actions) -> AuditTrail:
    return unwrap(actions.get_audit_trail(ctx, request_id))

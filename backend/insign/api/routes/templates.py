from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from insign.api.deps import get_current_user, get_template_actions
from insign.api.results import unwrap
from insign.schemas.template import (
    SignatureTemplateCreate,
    SignatureTemplateDetail,
    SignatureTemplateRead,
    SignatureTemplateUpdate,
)
from insign.services.actions import TemplateActions
from insign.services.workflow import CallerContext

router = APIRouter(prefix="/signature-templates", tags=["signature-templates"])

Caller = Annotated[CallerContext, Depends(get_current_user)]
Actions = Annotated[TemplateActions, Depends(get_template_actions)]


@router.get("", response_model=List[SignatureTemplateRead])
def list_signature_templates(ctx: Caller, actions: Actions) -> List[SignatureTemplateRead]:
    return unwrap(actions.list_templates(ctx))


@router.post("", response_model=SignatureTemplateDetail, status_code=status.HTTP_201_CREATED)
def create_signature_template(
    payload: SignatureTemplateCreate, ctx: Caller, actions: Actions
) -> SignatureTemplateDetail:
    return unwrap(actions.create_template(ctx, payload))


@router.get("/{template_id}", response_model=SignatureTemplateDetail)
def get_signature_template(template_id: UUID, ctx: Caller, actions: Actions) -> SignatureTemplateDetail:
    return unwrap(actions.get_template(ctx, template_id))


@router.patch("/{template_id}", response_model=SignatureTemplateRead)
def update_signature_template(
    template_id: UUID, payload: SignatureTemplateUpdate, ctx: Caller, actions: Actions
) -> SignatureTemplateRead:
    return unwrap(actions.update_template(ctx, template_id, payload))


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_signature_template(template_id: UUID, ctx: Caller, actions: Actions) -> Response:
    unwrap(actions.delete_template(ctx, template_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/duplicate", response_model=SignatureTemplateDetail, status_code=status.HTTP_201_CREATED)
def duplicate_signature_template(template_id: UUID, ctx: Caller, actions: Actions) -> SignatureTemplateDetail:
    return unwrap(actions.duplicate_template(ctx, template_id))

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from insign.api.deps import get_signature_actions
from insign.api.results import unwrap
from insign.schemas.public import SigningSession
from insign.schemas.signature import DeclinePayload, ParticipantRead, SignatureRead, SignatureSubmit
from insign.services.actions import SignatureActions

router = APIRouter(prefix="/public/sign", tags=["public-signatures"])

Actions = Annotated[SignatureActions, Depends(get_signature_actions)]


def _client_info(request: Request) -> tuple[str | None, str | None]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.get("/{token}", response_model=SigningSession)
def get_signing_session(token: str, actions: Actions) -> SigningSession:
    return unwrap(actions.resolve_access_token(token))


@router.post("/{token}/signatures", response_model=SignatureRead, status_code=201)
def submit_public_signature(
    token: str, payload: SignatureSubmit, request: Request, actions: Actions
) -> SignatureRead:
    ip_address, user_agent = _client_info(request)
    return unwrap(
        actions.submit_signature(
            token,
            payload.field_id,
            payload.signature_data,
            payload.signature_type,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )


@router.post("/{token}/complete", response_model=ParticipantRead)
def complete_public_signing(token: str, request: Request, actions: Actions) -> ParticipantRead:
    ip_address, user_agent = _client_info(request)
    return unwrap(actions.complete_participant(token, ip_address=ip_address, user_agent=user_agent))


@router.post("/{token}/decline", response_model=ParticipantRead)
def decline_public_signature(
    token: str, payload: DeclinePayload, request: Request, actions: Actions
) -> ParticipantRead:
    ip_address, user_agent = _client_info(request)
    return unwrap(actions.decline(token, payload.reason, ip_address=ip_address, user_agent=user_agent))

from __future__ import annotations

import base64
import binascii
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from insign.core.errors import (
    AuthError,
    ConflictError,
    InsignError,
    NotFoundError,
    StateError,
    ValidationError,
)
from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.base import as_utc, utcnow
from insign.models.signature import (
    FieldType,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    Signature,
    SignatureField,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureType,
    WorkflowType,
)
from insign.repositories.document import DocumentRepository
from insign.repositories.signature_request import SignatureRequestRepository
from insign.schemas.public import PublicRequestView, SigningSession
from insign.schemas.signature import (
    ParticipantRead,
    SignatureFieldCreate,
    SignatureFieldRead,
    SignatureFieldUpdate,
    SignatureRead,
    SignatureRequestCreate,
    SignatureRequestUpdate,
)
from insign.services.audit import AuditService
from insign.services.notification import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationEvent,
    safe_notify,
)
from insign.services.tokens import INVALID_TOKEN_MESSAGE, AccessTokenGateway

logger = logging.getLogger("insign.workflow")

FIELDS_LOCKED_MESSAGE = "Cannot modify fields after request is sent"
NOT_YOUR_TURN_MESSAGE = "It is not your turn to sign yet"
ALREADY_SIGNED_MESSAGE = "This field has already been signed"
INCOMPLETE_FIELDS_MESSAGE = "Please complete all required fields"
CANNOT_CANCEL_MESSAGE = "Cannot cancel this request"
DELETE_DRAFT_ONLY_MESSAGE = "Can only delete draft requests"
DOCUMENT_NOT_FOUND_MESSAGE = "Document not found"
INACTIVE_REQUEST_MESSAGE = "This signature request is no longer active"
PARTICIPANT_FINISHED_MESSAGE = "You have already responded to this signature request"
REQUEST_NOT_FOUND_MESSAGE = "Signature request not found"
FIELD_NOT_FOUND_MESSAGE = "Field not found"

_MAX_TYPED_SIGNATURE_LENGTH = 255
_MAX_FIELD_VALUE_LENGTH = 1000
_CHECKBOX_VALUES = {"true", "false"}
_IMAGE_DATA_URL = re.compile(r"^data:image/[a-z0-9.+-]+;base64,(?P<payload>.+)$", re.IGNORECASE | re.DOTALL)
# PNG, JPEG, GIF; WebP is checked separately (RIFF container)
_IMAGE_MAGIC = (b"\x89PNG\r\n\x1a\n", b"\xff\xd8\xff", b"GIF87a", b"GIF89a")


@dataclass(frozen=True)
class CallerContext:
    """Organization and user on whose behalf an owner-side operation runs."""

    org_id: UUID
    user_id: UUID


@dataclass
class PendingNotification:
    participant: Participant
    request: SignatureRequest
    event: NotificationEvent
    signing_url: str | None = None


# -------------------------------------------------------------------------
# Validation helpers
# -------------------------------------------------------------------------

def validate_field_geometry(
    field_type: FieldType,
    page_number: int,
    x: float,
    y: float,
    width: float,
    height: float,
    options: Optional[List[str]] = None,
) -> None:
    if page_number < 1:
        raise ValidationError("Page number must be at least 1")
    if not 0 <= x <= 100 or not 0 <= y <= 100:
        raise ValidationError("Field position must be between 0 and 100 percent")
    if not 1 <= width <= 50:
        raise ValidationError("Field width must be between 1 and 50 percent")
    if not 1 <= height <= 20:
        raise ValidationError("Field height must be between 1 and 20 percent")
    if x + width > 100 or y + height > 100:
        raise ValidationError("Field must fit within the page")
    if field_type is FieldType.DROPDOWN and not options:
        raise ValidationError("Dropdown fields require at least one option")


def _is_base64_image(value: str) -> bool:
    match = _IMAGE_DATA_URL.match(value)
    payload = match.group("payload") if match else value
    payload = "".join(payload.split())
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return False
    if decoded.startswith(_IMAGE_MAGIC):
        return True
    return decoded[:4] == b"RIFF" and decoded[8:12] == b"WEBP"


def _parse_iso_date(value: str) -> date:
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return date.fromisoformat(value)


def validate_signature_data(field: SignatureField, signature_data: str | None, signature_type: SignatureType) -> str:
    """Return the cleaned value to store for ``field`` or raise ``ValidationError``."""
    value = (signature_data or "").strip()
    if not value:
        raise ValidationError("Signature data is required")

    if field.field_type.captures_image:
        if signature_type is SignatureType.TYPED:
            if len(value) > _MAX_TYPED_SIGNATURE_LENGTH:
                raise ValidationError("Typed signatures are limited to 255 characters")
        elif not _is_base64_image(value):
            raise ValidationError("Signature image must be a base64 encoded image or data URL")
        return value

    if len(value) > _MAX_FIELD_VALUE_LENGTH:
        raise ValidationError("Field value is too long")
    if field.field_type is FieldType.CHECKBOX:
        lowered = value.lower()
        if lowered not in _CHECKBOX_VALUES:
            raise ValidationError("Checkbox value must be 'true' or 'false'")
        return lowered
    if field.field_type is FieldType.DATE:
        try:
            return _parse_iso_date(value).isoformat()
        except ValueError as exc:
            raise ValidationError("Date fields require an ISO date (YYYY-MM-DD)") from exc
    if field.field_type is FieldType.DROPDOWN and value not in (field.options or []):
        raise ValidationError("Value is not one of the field options")
    return value


def current_tier(participants: Iterable[Participant]) -> int | None:
    """Lowest order index among required participants that have not finished."""
    pending = [p.order_index for p in participants if p.role.is_required and not p.status.is_done]
    return min(pending) if pending else None


class SignatureWorkflowService:
    """
    State machine for signature requests.

    Every operation runs in one repository transaction: it re-reads persisted
    state, claims the request version, validates, then writes the new state
    together with its audit entries. Notifications are queued while the
    transaction runs and dispatched only after it commits; they are
    best-effort and never undo a transition.
    """

    def __init__(
        self,
        repository: SignatureRequestRepository,
        documents: DocumentRepository,
        dispatcher: NotificationDispatcher | None = None,
        tokens: AccessTokenGateway | None = None,
        audit: AuditService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.documents = documents
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.tokens = tokens or AccessTokenGateway(repository)
        self.audit = audit or AuditService(repository, clock=clock)
        self.clock = clock
        self._outbox: List[PendingNotification] = []

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        """Repository transaction whose queued notifications go out once it has committed."""
        self._outbox = []
        try:
            with self.repository.transaction():
                yield
        except BaseException:
            self._outbox = []
            raise
        pending, self._outbox = self._outbox, []
        self._deliver(pending)

    # ------------------------------------------------------------------
    # Owner side
    # ------------------------------------------------------------------

    def create_request(self, ctx: CallerContext, payload: SignatureRequestCreate) -> SignatureRequest:
        if not payload.participants:
            raise ValidationError("At least one participant is required")
        if not any(item.role.is_required for item in payload.participants):
            raise ValidationError("At least one signer or approver is required")
        emails = [item.email for item in payload.participants]
        if len(set(emails)) != len(emails):
            raise ValidationError("Each participant email may only appear once")

        expires_at = as_utc(payload.expires_at)
        with self.repository.transaction():
            document = self.documents.get_document(payload.document_id, ctx.org_id)
            if document is None:
                raise ValidationError(DOCUMENT_NOT_FOUND_MESSAGE)
            if expires_at is not None and expires_at <= self.clock():
                raise ValidationError("Expiry date must be in the future")

            request = self.repository.add_request(
                SignatureRequest(
                    org_id=ctx.org_id,
                    document_id=document.id,
                    title=payload.title,
                    message=payload.message,
                    workflow_type=payload.workflow_type,
                    expires_at=expires_at,
                    created_by_id=ctx.user_id,
                    created_at=self.clock(),
                )
            )
            participants = [
                self.repository.add_participant(
                    Participant(
                        request_id=request.id,
                        email=item.email,
                        full_name=item.full_name,
                        role=item.role,
                        order_index=item.order_index,
                        created_at=self.clock(),
                    )
                )
                for item in payload.participants
            ]
            for item in payload.fields:
                if item.participant_index >= len(participants):
                    raise ValidationError("Field references an unknown participant")
                owner = participants[item.participant_index]
                if owner.role is ParticipantRole.CC:
                    raise ValidationError("cc participants cannot be assigned fields")
                validate_field_geometry(
                    item.field_type, item.page_number, item.x, item.y, item.width, item.height, item.options
                )
                self.repository.add_field(
                    SignatureField(
                        request_id=request.id,
                        participant_id=owner.id,
                        field_type=item.field_type,
                        page_number=item.page_number,
                        x=item.x,
                        y=item.y,
                        width=item.width,
                        height=item.height,
                        required=item.required,
                        label=item.label,
                        options=item.options,
                    )
                )

            self.audit.record(
                request.id,
                AuditAction.REQUEST_CREATED,
                actor_id=ctx.user_id,
                metadata={
                    "title": request.title,
                    "workflow_type": request.workflow_type,
                    "participant_count": len(participants),
                },
            )
        logger.info("Signature request %s created by %s", request.id, ctx.user_id)
        return request

    def update_request(
        self, ctx: CallerContext, request_id: UUID, payload: SignatureRequestUpdate
    ) -> SignatureRequest:
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("title", "") is None:
            changes.pop("title")
        if "title" in changes:
            changes["title"] = changes["title"].strip()
            if not changes["title"]:
                raise ValidationError("Title is required")
        if "expires_at" in changes:
            changes["expires_at"] = as_utc(changes["expires_at"])

        with self.repository.transaction():
            request = self._load_request(ctx, request_id)
            if request.status is not SignatureRequestStatus.DRAFT:
                raise StateError("Only draft requests can be edited")
            expires_at = changes.get("expires_at")
            if expires_at is not None and expires_at <= self.clock():
                raise ValidationError("Expiry date must be in the future")
            if not changes:
                return request

            self.repository.claim(request)
            for key, value in changes.items():
                setattr(request, key, value)
            request.updated_at = self.clock()
            self.repository.save(request)
            self.audit.record(request.id, AuditAction.REQUEST_UPDATED, actor_id=ctx.user_id, metadata=changes)
        logger.info("Signature request %s updated (%s)", request.id, ", ".join(sorted(changes)))
        return request

    def get_request(self, ctx: CallerContext, request_id: UUID) -> SignatureRequest:
        return self._load_current(ctx, request_id)

    def list_requests(
        self, ctx: CallerContext, status: SignatureRequestStatus | None = None
    ) -> List[SignatureRequest]:
        now = self.clock()
        overdue = [
            r.id
            for r in self.repository.list_requests(ctx.org_id)
            if r.status.is_active and r.is_overdue(now)
        ]
        for request_id in overdue:
            self._expire_lazily(request_id)
        return self.repository.list_requests(ctx.org_id, status)

    def list_participants(self, ctx: CallerContext, request_id: UUID) -> List[Participant]:
        request = self._load_request(ctx, request_id)
        return self.repository.list_participants(request.id)

    def list_fields(self, ctx: CallerContext, request_id: UUID) -> List[SignatureField]:
        request = self._load_request(ctx, request_id)
        return self.repository.list_fields(request.id)

    def add_field(self, ctx: CallerContext, request_id: UUID, payload: SignatureFieldCreate) -> SignatureField:
        with self.repository.transaction():
            request = self._load_request(ctx, request_id)
            self._ensure_fields_editable(request)
            owner = self._field_owner(request, payload.participant_id)
            validate_field_geometry(
                payload.field_type,
                payload.page_number,
                payload.x,
                payload.y,
                payload.width,
                payload.height,
                payload.options,
            )
            self.repository.claim(request)
            field = self.repository.add_field(
                SignatureField(
                    request_id=request.id,
                    participant_id=owner.id,
                    field_type=payload.field_type,
                    page_number=payload.page_number,
                    x=payload.x,
                    y=payload.y,
                    width=payload.width,
                    height=payload.height,
                    required=payload.required,
                    label=payload.label,
                    options=payload.options,
                )
            )
            self._record_field_event(request, field, AuditAction.FIELD_ADDED, ctx)
        return field

    def update_field(self, ctx: CallerContext, field_id: UUID, payload: SignatureFieldUpdate) -> SignatureField:
        changes = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or key in ("label", "options")
        }
        with self.repository.transaction():
            field, request = self._load_field(ctx, field_id)
            self._ensure_fields_editable(request)
            if "participant_id" in changes:
                self._field_owner(request, changes["participant_id"])
            merged = {
                "field_type": field.field_type,
                "page_number": field.page_number,
                "x": field.x,
                "y": field.y,
                "width": field.width,
                "height": field.height,
                "options": field.options,
            }
            merged.update({key: value for key, value in changes.items() if key in merged})
            validate_field_geometry(**merged)

            self.repository.claim(request)
            for key, value in changes.items():
                setattr(field, key, value)
            field.updated_at = self.clock()
            self.repository.save(field)
            self._record_field_event(
                request, field, AuditAction.FIELD_UPDATED, ctx, extra={"changes": sorted(changes)}
            )
        return field

    def delete_field(self, ctx: CallerContext, field_id: UUID) -> None:
        with self.repository.transaction():
            field, request = self._load_field(ctx, field_id)
            self._ensure_fields_editable(request)
            self.repository.claim(request)
            self._record_field_event(request, field, AuditAction.FIELD_REMOVED, ctx)
            self.repository.delete_field(field)

    def send(self, ctx: CallerContext, request_id: UUID) -> SignatureRequest:
        with self._unit_of_work():
            request = self._load_request(ctx, request_id)
            if request.status is not SignatureRequestStatus.DRAFT:
                raise StateError("Only draft requests can be sent")
            participants = self.repository.list_participants(request.id)
            if not participants:
                raise ValidationError("At least one participant is required")
            if not any(p.role.is_required for p in participants):
                raise ValidationError("At least one signer or approver is required")
            participant_ids = {p.id for p in participants}
            if any(f.participant_id not in participant_ids for f in self.repository.list_fields(request.id)):
                raise ValidationError("Every field must belong to a participant of this request")
            now = self.clock()
            if request.expires_at is not None and request.expires_at <= now:
                raise ValidationError("Expiry date must be in the future")

            self.repository.claim(request)
            for participant in participants:
                self.tokens.issue(participant)
            self._set_status(request, SignatureRequestStatus.SENT)
            request.sent_at = now

            if request.workflow_type is WorkflowType.PARALLEL:
                targets = list(participants)
            else:
                tier = current_tier(participants)
                targets = [p for p in participants if p.role.is_required and p.order_index == tier]

            self.audit.record(
                request.id,
                AuditAction.REQUEST_SENT,
                actor_id=ctx.user_id,
                metadata={
                    "workflow_type": request.workflow_type,
                    "participant_count": len(participants),
                    "notified_count": len(targets),
                },
            )
            for participant in targets:
                self._notify_to_sign(request, participant)
        logger.info("Signature request %s sent to %s participant(s)", request.id, len(targets))
        return request

    def cancel(self, ctx: CallerContext, request_id: UUID) -> SignatureRequest:
        with self._unit_of_work():
            request = self._load_request(ctx, request_id)
            if not request.status.can_transition(SignatureRequestStatus.CANCELLED):
                raise StateError(CANNOT_CANCEL_MESSAGE)
            self.repository.claim(request)
            previous = request.status
            self._set_status(request, SignatureRequestStatus.CANCELLED)
            request.cancelled_at = self.clock()
            self.audit.record(
                request.id,
                AuditAction.REQUEST_CANCELLED,
                actor_id=ctx.user_id,
                metadata={"cancelled_by": ctx.user_id, "previous_status": previous},
            )
            for participant in self.repository.list_participants(request.id):
                if participant.notified_at is not None:
                    self._queue(participant, request, NotificationEvent.REQUEST_CANCELLED)
        logger.info("Signature request %s cancelled by %s", request.id, ctx.user_id)
        return request

    def delete(self, ctx: CallerContext, request_id: UUID) -> None:
        with self.repository.transaction():
            request = self._load_request(ctx, request_id)
            if request.status is not SignatureRequestStatus.DRAFT:
                raise StateError(DELETE_DRAFT_ONLY_MESSAGE)
            self.repository.claim(request)
            self.repository.delete_request(request)
        logger.info("Draft signature request %s deleted by %s", request_id, ctx.user_id)

    def resend_notifications(self, ctx: CallerContext, request_id: UUID) -> int:
        self._load_current(ctx, request_id)
        with self._unit_of_work():
            request = self._load_request(ctx, request_id)
            if not request.status.is_active:
                raise StateError(INACTIVE_REQUEST_MESSAGE)
            participants = self.repository.list_participants(request.id)
            if request.workflow_type is WorkflowType.PARALLEL:
                targets = [p for p in participants if not p.status.is_terminal]
            else:
                tier = current_tier(participants)
                targets = [
                    p
                    for p in participants
                    if p.role.is_required and p.order_index == tier and not p.status.is_done
                ]
            if not targets:
                return 0
            self.repository.claim(request)
            for participant in targets:
                self.tokens.issue(participant)
                self._notify_to_sign(request, participant)
        logger.info("Re-notified %s participant(s) of request %s", len(targets), request_id)
        return len(targets)

    def get_audit_trail(self, ctx: CallerContext, request_id: UUID) -> List[SignatureAuditLog]:
        request = self._load_request(ctx, request_id)
        return self.audit.trail(request.id)

    def list_audit_events(
        self,
        ctx: CallerContext,
        action: AuditAction | None = None,
        request_id: UUID | None = None,
        actor_id: UUID | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Tuple[SignatureAuditLog, str]], int]:
        return self.audit.list_events(
            ctx.org_id,
            action=action,
            request_id=request_id,
            actor_id=actor_id,
            start_at=start_at,
            end_at=end_at,
            page=page,
            page_size=page_size,
        )

    def expire_overdue(self, now: datetime | None = None) -> int:
        """
        Sweep every active request past its deadline into ``expired``.

        Each request is expired in its own transaction; one that was changed
        concurrently is skipped and picked up again by the next sweep.
        """
        moment = as_utc(now) or self.clock()
        expired = 0
        for request_id in [r.id for r in self.repository.list_overdue_requests(moment)]:
            try:
                with self.repository.transaction():
                    request = self.repository.get_request_for_update(request_id)
                    if request is None or not request.status.is_active or not request.is_overdue(moment):
                        continue
                    self._expire(request, moment)
            except ConflictError:
                logger.info("Skipping expiry of request %s, it changed concurrently", request_id)
                continue
            expired += 1
        if expired:
            logger.info("Expired %s overdue signature request(s)", expired)
        return expired

    # ------------------------------------------------------------------
    # Participant side (token authorized)
    # ------------------------------------------------------------------

    def resolve_access_token(self, token: str) -> SigningSession:
        self._expire_lazily_by_token(token)
        with self.repository.transaction():
            participant, request = self._active_participant(token)
            if participant.status is ParticipantStatus.NOTIFIED:
                self.repository.claim(request)
                participant.status = ParticipantStatus.VIEWED
                participant.viewed_at = self.clock()
                self.repository.save(participant)
                self.audit.record(
                    request.id,
                    AuditAction.PARTICIPANT_VIEWED,
                    participant_id=participant.id,
                    metadata={"participant_email": participant.email},
                )
            session = self._build_session(participant, request)
        return session

    def submit_signature(
        self,
        token: str,
        field_id: UUID,
        signature_data: str,
        signature_type: SignatureType,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Signature:
        self._expire_lazily_by_token(token)
        with self._unit_of_work():
            participant, request = self._active_participant(token)
            if participant.role is ParticipantRole.CC:
                raise StateError("cc participants cannot sign")
            participants = self.repository.list_participants(request.id)
            if not self._is_turn(request, participant, participants):
                raise StateError(NOT_YOUR_TURN_MESSAGE)

            field = self.repository.get_field(field_id)
            if field is None or field.request_id != request.id or field.participant_id != participant.id:
                raise NotFoundError(FIELD_NOT_FOUND_MESSAGE)
            if self.repository.find_signature(field.id, participant.id) is not None:
                raise ConflictError(ALREADY_SIGNED_MESSAGE)
            value = validate_signature_data(field, signature_data, signature_type)

            self.repository.claim(request)
            now = self.clock()
            signature = self.repository.add_signature(
                Signature(
                    request_id=request.id,
                    field_id=field.id,
                    participant_id=participant.id,
                    signature_data=value,
                    signature_type=signature_type,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=now,
                )
            )
            if not field.field_type.captures_image:
                field.value = value
                field.updated_at = now
                self.repository.save(field)
            if participant.status in (ParticipantStatus.PENDING, ParticipantStatus.NOTIFIED):
                participant.status = ParticipantStatus.VIEWED
                participant.viewed_at = participant.viewed_at or now
            participant.ip_address = ip_address or participant.ip_address
            participant.user_agent = user_agent or participant.user_agent
            self.repository.save(participant)

            self.audit.record(
                request.id,
                AuditAction.FIELD_SIGNED,
                participant_id=participant.id,
                metadata={"field_id": field.id, "signature_type": signature_type},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self._start_if_needed(request, participant)
            if self._finishes_on_signature(request, participant):
                self._finish_participant(request, participant, participants, ip_address, user_agent)
        logger.info("Field %s of request %s signed by participant %s", field_id, request.id, participant.id)
        return signature

    def complete_participant(
        self, token: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> Participant:
        self._expire_lazily_by_token(token)
        with self._unit_of_work():
            participant, request = self._active_participant(token)
            if participant.role is ParticipantRole.CC:
                raise StateError("cc participants cannot sign")
            participants = self.repository.list_participants(request.id)
            if not self._is_turn(request, participant, participants):
                raise StateError(NOT_YOUR_TURN_MESSAGE)
            if not self._required_fields_signed(request, participant):
                raise ValidationError(INCOMPLETE_FIELDS_MESSAGE)

            self.repository.claim(request)
            self._start_if_needed(request, participant)
            self._finish_participant(request, participant, participants, ip_address, user_agent)
        return participant

    def decline(
        self,
        token: str,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Participant:
        self._expire_lazily_by_token(token)
        reason = (reason or "").strip() or None
        with self._unit_of_work():
            participant, request = self._active_participant(token)
            if participant.role is ParticipantRole.CC:
                raise StateError("cc participants cannot decline")

            self.repository.claim(request)
            participant.status = ParticipantStatus.DECLINED
            participant.declined_at = self.clock()
            participant.decline_reason = reason
            participant.ip_address = ip_address or participant.ip_address
            participant.user_agent = user_agent or participant.user_agent
            self.repository.save(participant)
            self.audit.record(
                request.id,
                AuditAction.PARTICIPANT_DECLINED,
                participant_id=participant.id,
                metadata={"participant_email": participant.email, "reason": reason},
                ip_address=ip_address,
                user_agent=user_agent,
            )

            self._set_status(request, SignatureRequestStatus.DECLINED)
            self.audit.record(
                request.id,
                AuditAction.REQUEST_DECLINED,
                participant_id=participant.id,
                metadata={"participant_id": participant.id, "reason": reason},
            )
            for other in self.repository.list_participants(request.id):
                if other.id != participant.id:
                    self._queue(other, request, NotificationEvent.REQUEST_DECLINED)
        logger.info("Participant %s declined request %s", participant.id, request.id)
        return participant

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_request(self, ctx: CallerContext, request_id: UUID) -> SignatureRequest:
        request = self.repository.get_request(request_id, org_id=ctx.org_id)
        if request is None:
            raise NotFoundError(REQUEST_NOT_FOUND_MESSAGE)
        return request

    def _load_current(self, ctx: CallerContext, request_id: UUID) -> SignatureRequest:
        """Org-scoped load that first commits a pending expiry of the request."""
        request = self._load_request(ctx, request_id)
        if request.status.is_active and request.is_overdue(self.clock()):
            self._expire_lazily(request.id)
            request = self._load_request(ctx, request_id)
        return request

    def _load_field(self, ctx: CallerContext, field_id: UUID) -> tuple[SignatureField, SignatureRequest]:
        field = self.repository.get_field(field_id)
        if field is None:
            raise NotFoundError(FIELD_NOT_FOUND_MESSAGE)
        request = self.repository.get_request(field.request_id, org_id=ctx.org_id)
        if request is None:
            raise NotFoundError(FIELD_NOT_FOUND_MESSAGE)
        return field, request

    def _field_owner(self, request: SignatureRequest, participant_id: UUID) -> Participant:
        owner = self.repository.get_participant(participant_id)
        if owner is None or owner.request_id != request.id:
            raise ValidationError("Field participant must belong to this request")
        if owner.role is ParticipantRole.CC:
            raise ValidationError("cc participants cannot be assigned fields")
        return owner

    @staticmethod
    def _ensure_fields_editable(request: SignatureRequest) -> None:
        if request.status is not SignatureRequestStatus.DRAFT:
            raise StateError(FIELDS_LOCKED_MESSAGE)

    def _set_status(self, request: SignatureRequest, target: SignatureRequestStatus) -> None:
        if not request.status.can_transition(target):
            raise StateError(f"Cannot move request from {request.status.value} to {target.value}")
        logger.info("Signature request %s: %s -> %s", request.id, request.status.value, target.value)
        request.status = target
        request.updated_at = self.clock()
        self.repository.save(request)

    def _record_field_event(
        self,
        request: SignatureRequest,
        field: SignatureField,
        action: AuditAction,
        ctx: CallerContext,
        extra: dict[str, Any] | None = None,
    ) -> None:
        metadata: dict[str, Any] = {
            "field_id": field.id,
            "field_type": field.field_type,
            "participant_id": field.participant_id,
        }
        metadata.update(extra or {})
        self.audit.record(request.id, action, actor_id=ctx.user_id, metadata=metadata)

    def _queue(
        self,
        participant: Participant,
        request: SignatureRequest,
        event: NotificationEvent,
        signing_url: str | None = None,
    ) -> None:
        self._outbox.append(PendingNotification(participant, request, event, signing_url))

    def _deliver(self, pending: List[PendingNotification]) -> None:
        failed = [
            item
            for item in pending
            if not safe_notify(self.dispatcher, item.participant, item.request, item.event, item.signing_url)
        ]
        if not failed:
            return
        # the transition is already committed, so a failure here is only logged
        try:
            with self.repository.transaction():
                for item in failed:
                    self.audit.record(
                        item.request.id,
                        AuditAction.NOTIFICATION_FAILED,
                        participant_id=item.participant.id,
                        metadata={"event": item.event, "participant_email": item.participant.email},
                    )
        except (InsignError, SQLAlchemyError) as exc:
            logger.warning("Could not record %s undelivered notification(s): %s", len(failed), exc)

    def _notify_to_sign(self, request: SignatureRequest, participant: Participant) -> None:
        signing_url = self.tokens.signing_url(participant.access_token) if participant.access_token else None
        self._queue(participant, request, NotificationEvent.SIGNATURE_REQUESTED, signing_url)
        if participant.status is ParticipantStatus.PENDING:
            participant.status = ParticipantStatus.NOTIFIED
        participant.notified_at = self.clock()
        self.repository.save(participant)
        self.audit.record(
            request.id,
            AuditAction.PARTICIPANT_NOTIFIED,
            participant_id=participant.id,
            metadata={"participant_email": participant.email, "order_index": participant.order_index},
        )

    def _is_turn(self, request: SignatureRequest, participant: Participant, participants: List[Participant]) -> bool:
        if request.workflow_type is WorkflowType.PARALLEL:
            return True
        return participant.order_index == current_tier(participants)

    def _required_field_state(self, request: SignatureRequest, participant: Participant) -> Tuple[int, bool]:
        """Number of required fields the participant owns, and whether all of them are signed."""
        required = [f.id for f in self.repository.list_fields(request.id, participant.id) if f.required]
        signed = {s.field_id for s in self.repository.list_signatures(request.id, participant.id)}
        return len(required), all(field_id in signed for field_id in required)

    def _required_fields_signed(self, request: SignatureRequest, participant: Participant) -> bool:
        return self._required_field_state(request, participant)[1]

    def _finishes_on_signature(self, request: SignatureRequest, participant: Participant) -> bool:
        # without required fields the participant finishes through complete_participant
        count, all_signed = self._required_field_state(request, participant)
        return count > 0 and all_signed

    def _start_if_needed(self, request: SignatureRequest, participant: Participant) -> None:
        if request.status is not SignatureRequestStatus.SENT:
            return
        self._set_status(request, SignatureRequestStatus.IN_PROGRESS)
        self.audit.record(
            request.id,
            AuditAction.REQUEST_STARTED,
            participant_id=participant.id,
            metadata={"participant_id": participant.id},
        )

    def _finish_participant(
        self,
        request: SignatureRequest,
        participant: Participant,
        participants: List[Participant],
        ip_address: str | None,
        user_agent: str | None,
    ) -> None:
        if participant.role is ParticipantRole.APPROVER:
            participant.status = ParticipantStatus.COMPLETED
        else:
            participant.status = ParticipantStatus.SIGNED
        participant.signed_at = self.clock()
        self.repository.save(participant)
        self.audit.record(
            request.id,
            AuditAction.PARTICIPANT_SIGNED,
            participant_id=participant.id,
            metadata={
                "participant_email": participant.email,
                "role": participant.role,
                "field_count": len(self.repository.list_signatures(request.id, participant.id)),
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info("Participant %s finished request %s", participant.id, request.id)

        required = [p for p in participants if p.role.is_required]
        if all(p.status.is_done for p in required):
            self._complete(request, participants)
            return
        if request.workflow_type is not WorkflowType.SEQUENTIAL:
            return
        if any(not p.status.is_done for p in required if p.order_index == participant.order_index):
            return
        tier = current_tier(participants)
        for candidate in required:
            if candidate.order_index == tier and candidate.status is ParticipantStatus.PENDING:
                self._notify_to_sign(request, candidate)

    def _complete(self, request: SignatureRequest, participants: List[Participant]) -> None:
        now = self.clock()
        self._set_status(request, SignatureRequestStatus.COMPLETED)
        request.completed_at = now
        self.audit.record(
            request.id,
            AuditAction.REQUEST_COMPLETED,
            metadata={"completed_at": now, "participant_count": len(participants)},
        )
        for participant in participants:
            self._queue(participant, request, NotificationEvent.REQUEST_COMPLETED)

    def _expire(self, request: SignatureRequest, now: datetime) -> None:
        self.repository.claim(request)
        previous = request.status
        self._set_status(request, SignatureRequestStatus.EXPIRED)
        self.audit.record(
            request.id,
            AuditAction.REQUEST_EXPIRED,
            metadata={"expires_at": request.expires_at, "previous_status": previous},
        )

    def _expire_lazily(self, request_id: UUID) -> None:
        """Commit the expiry of an overdue request before the caller's own transaction reads it."""
        try:
            with self.repository.transaction():
                request = self.repository.get_request(request_id)
                now = self.clock()
                if request is not None and request.status.is_active and request.is_overdue(now):
                    self._expire(request, now)
        except ConflictError:
            # a concurrent transaction already moved the request; the next read sees it
            logger.info("Lazy expiry of request %s lost a race", request_id)

    def _expire_lazily_by_token(self, token: str) -> None:
        participant = self.repository.get_participant_by_token((token or "").strip()) if token else None
        if participant is not None:
            self._expire_lazily(participant.request_id)

    def _active_participant(self, token: str) -> tuple[Participant, SignatureRequest]:
        participant = self.tokens.resolve(token)
        request = self.repository.get_request_for_update(participant.request_id)
        if request is None:
            raise AuthError(INVALID_TOKEN_MESSAGE)
        if not request.status.is_active:
            raise AuthError(INACTIVE_REQUEST_MESSAGE)
        if participant.status.is_terminal:
            raise AuthError(PARTICIPANT_FINISHED_MESSAGE)
        return participant, request

    def _build_session(self, participant: Participant, request: SignatureRequest) -> SigningSession:
        participants = self.repository.list_participants(request.id)
        document = self.documents.get_document(request.document_id, request.org_id)
        view = PublicRequestView.model_validate(request)
        view.document_name = document.name if document else None
        can_sign = participant.role.is_required and self._is_turn(request, participant, participants)
        return SigningSession(
            access_token=participant.access_token or "",
            participant=ParticipantRead.model_validate(participant),
            request=view,
            fields=[
                SignatureFieldRead.model_validate(f)
                for f in self.repository.list_fields(request.id, participant.id)
            ],
            signatures=[
                SignatureRead.model_validate(s)
                for s in self.repository.list_signatures(request.id, participant.id)
            ],
            can_sign=can_sign,
        )

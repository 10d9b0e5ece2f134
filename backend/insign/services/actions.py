"""
Result-returning facades over ``SignatureWorkflowService`` and ``SignatureTemplateService``.

Nothing raised by the services crosses this boundary: domain errors become a
failed ``ActionResult`` carrying their message and code, anything else is
logged with its traceback and reported as a generic failure.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from insign.core.errors import InsignError
from insign.models.audit import AuditAction
from insign.models.signature import SignatureRequest, SignatureRequestStatus, SignatureType
from insign.schemas.audit import AuditEventList, AuditEventRead, AuditLogRead, AuditTrail
from insign.schemas.common import ActionResult
from insign.schemas.public import SigningSession
from insign.schemas.signature import (
    ParticipantRead,
    SignatureFieldCreate,
    SignatureFieldRead,
    SignatureFieldUpdate,
    SignatureRead,
    SignatureRequestCreate,
    SignatureRequestDetail,
    SignatureRequestRead,
    SignatureRequestUpdate,
)
from insign.schemas.template import (
    SignatureTemplateCreate,
    SignatureTemplateDetail,
    SignatureTemplateRead,
    SignatureTemplateUpdate,
    TemplateFieldRead,
    TemplateParticipantRead,
)
from insign.services.audit import page_window
from insign.services.templates import SignatureTemplateService
from insign.services.workflow import CallerContext, SignatureWorkflowService

logger = logging.getLogger("insign.actions")

T = TypeVar("T")


class ResultActions:
    def _run(self, failure: str, operation: Callable[[], T]) -> ActionResult[T]:
        try:
            return ActionResult.ok(operation())
        except InsignError as exc:
            return ActionResult.fail(exc.message, exc.code)
        except SQLAlchemyError:
            logger.exception("%s: persistence error", failure)
            return ActionResult.fail(failure)
        except Exception:  # noqa: BLE001 - never leak internals to callers
            logger.exception("%s: unexpected error", failure)
            return ActionResult.fail(failure)


class SignatureActions(ResultActions):
    def __init__(self, workflow: SignatureWorkflowService) -> None:
        self.workflow = workflow

    def _detail(self, ctx: CallerContext, request: SignatureRequest) -> SignatureRequestDetail:
        detail = SignatureRequestDetail.model_validate(request)
        detail.participants = [
            ParticipantRead.model_validate(p) for p in self.workflow.list_participants(ctx, request.id)
        ]
        detail.fields = [SignatureFieldRead.model_validate(f) for f in self.workflow.list_fields(ctx, request.id)]
        return detail

    # owner side -------------------------------------------------------

    def create_request(self, ctx: CallerContext, payload: SignatureRequestCreate) -> ActionResult[SignatureRequestDetail]:
        return self._run(
            "Failed to create signature request",
            lambda: self._detail(ctx, self.workflow.create_request(ctx, payload)),
        )

    def update_request(
        self, ctx: CallerContext, request_id: UUID, payload: SignatureRequestUpdate
    ) -> ActionResult[SignatureRequestRead]:
        return self._run(
            "Failed to update signature request",
            lambda: SignatureRequestRead.model_validate(self.workflow.update_request(ctx, request_id, payload)),
        )

    def get_request(self, ctx: CallerContext, request_id: UUID) -> ActionResult[SignatureRequestDetail]:
        return self._run(
            "Failed to load signature request",
            lambda: self._detail(ctx, self.workflow.get_request(ctx, request_id)),
        )

    def list_requests(
        self, ctx: CallerContext, status: SignatureRequestStatus | None = None
    ) -> ActionResult[List[SignatureRequestRead]]:
        return self._run(
            "Failed to list signature requests",
            lambda: [SignatureRequestRead.model_validate(r) for r in self.workflow.list_requests(ctx, status)],
        )

    def list_fields(self, ctx: CallerContext, request_id: UUID) -> ActionResult[List[SignatureFieldRead]]:
        return self._run(
            "Failed to list fields",
            lambda: [SignatureFieldRead.model_validate(f) for f in self.workflow.list_fields(ctx, request_id)],
        )

    def add_field(
        self, ctx: CallerContext, request_id: UUID, payload: SignatureFieldCreate
    ) -> ActionResult[SignatureFieldRead]:
        return self._run(
            "Failed to add field",
            lambda: SignatureFieldRead.model_validate(self.workflow.add_field(ctx, request_id, payload)),
        )

    def update_field(
        self, ctx: CallerContext, field_id: UUID, payload: SignatureFieldUpdate
    ) -> ActionResult[SignatureFieldRead]:
        return self._run(
            "Failed to update field",
            lambda: SignatureFieldRead.model_validate(self.workflow.update_field(ctx, field_id, payload)),
        )

    def delete_field(self, ctx: CallerContext, field_id: UUID) -> ActionResult[None]:
        return self._run("Failed to delete field", lambda: self.workflow.delete_field(ctx, field_id))

    def send(self, ctx: CallerContext, request_id: UUID) -> ActionResult[SignatureRequestRead]:
        return self._run(
            "Failed to send signature request",
            lambda: SignatureRequestRead.model_validate(self.workflow.send(ctx, request_id)),
        )

    def cancel(self, ctx: CallerContext, request_id: UUID) -> ActionResult[SignatureRequestRead]:
        return self._run(
            "Failed to cancel signature request",
            lambda: SignatureRequestRead.model_validate(self.workflow.cancel(ctx, request_id)),
        )

    def delete(self, ctx: CallerContext, request_id: UUID) -> ActionResult[None]:
        return self._run("Failed to delete signature request", lambda: self.workflow.delete(ctx, request_id))

    def resend_notifications(self, ctx: CallerContext, request_id: UUID) -> ActionResult[int]:
        return self._run(
            "Failed to resend notifications",
            lambda: self.workflow.resend_notifications(ctx, request_id),
        )

    def get_audit_trail(self, ctx: CallerContext, request_id: UUID) -> ActionResult[AuditTrail]:
        def load() -> AuditTrail:
            items = [AuditLogRead.model_validate(e) for e in self.workflow.get_audit_trail(ctx, request_id)]
            return AuditTrail(request_id=request_id, items=items, total=len(items))

        return self._run("Failed to load audit trail", load)

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
    ) -> ActionResult[AuditEventList]:
        def load() -> AuditEventList:
            current_page, current_size = page_window(page, page_size)
            rows, total = self.workflow.list_audit_events(
                ctx,
                action=action,
                request_id=request_id,
                actor_id=actor_id,
                start_at=start_at,
                end_at=end_at,
                page=current_page,
                page_size=current_size,
            )
            items = [
                AuditEventRead(**AuditLogRead.model_validate(entry).model_dump(), request_title=title)
                for entry, title in rows
            ]
            return AuditEventList(items=items, total=total, page=current_page, page_size=current_size)

        return self._run("Failed to list audit events", load)

    def expire_overdue(self, now: datetime | None = None) -> ActionResult[int]:
        return self._run("Failed to expire overdue requests", lambda: self.workflow.expire_overdue(now))

    # participant side -------------------------------------------------

    def resolve_access_token(self, token: str) -> ActionResult[SigningSession]:
        return self._run("Failed to open signing session", lambda: self.workflow.resolve_access_token(token))

    def submit_signature(
        self,
        token: str,
        field_id: UUID,
        signature_data: str,
        signature_type: SignatureType,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ActionResult[SignatureRead]:
        return self._run(
            "Failed to submit signature",
            lambda: SignatureRead.model_validate(
                self.workflow.submit_signature(
                    token, field_id, signature_data, signature_type, ip_address=ip_address, user_agent=user_agent
                )
            ),
        )

    def complete_participant(
        self, token: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> ActionResult[ParticipantRead]:
        return self._run(
            "Failed to complete signing",
            lambda: ParticipantRead.model_validate(
                self.workflow.complete_participant(token, ip_address=ip_address, user_agent=user_agent)
            ),
        )

    def decline(
        self,
        token: str,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ActionResult[ParticipantRead]:
        return self._run(
            "Failed to decline signature request",
            lambda: ParticipantRead.model_validate(
                self.workflow.decline(token, reason, ip_address=ip_address, user_agent=user_agent)
            ),
        )


class TemplateActions(ResultActions):
    def __init__(self, templates: SignatureTemplateService) -> None:
        self.templates = templates

    def _detail(self, ctx: CallerContext, template_id: UUID) -> SignatureTemplateDetail:
        detail = SignatureTemplateDetail.model_validate(self.templates.get_template(ctx, template_id))
        detail.participants = [
            TemplateParticipantRead.model_validate(p) for p in self.templates.list_participants(ctx, template_id)
        ]
        detail.fields = [TemplateFieldRead.model_validate(f) for f in self.templates.list_fields(ctx, template_id)]
        return detail

    def list_templates(self, ctx: CallerContext) -> ActionResult[List[SignatureTemplateRead]]:
        return self._run(
            "Failed to list signature templates",
            lambda: [SignatureTemplateRead.model_validate(t) for t in self.templates.list_templates(ctx)],
        )

    def get_template(self, ctx: CallerContext, template_id: UUID) -> ActionResult[SignatureTemplateDetail]:
        return self._run("Failed to load signature template", lambda: self._detail(ctx, template_id))

    def create_template(
        self, ctx: CallerContext, payload: SignatureTemplateCreate
    ) -> ActionResult[SignatureTemplateDetail]:
        return self._run(
            "Failed to create signature template",
            lambda: self._detail(ctx, self.templates.create_template(ctx, payload).id),
        )

    def update_template(
        self, ctx: CallerContext, template_id: UUID, payload: SignatureTemplateUpdate
    ) -> ActionResult[SignatureTemplateRead]:
        return self._run(
            "Failed to update signature template",
            lambda: SignatureTemplateRead.model_validate(self.templates.update_template(ctx, template_id, payload)),
        )

    def delete_template(self, ctx: CallerContext, template_id: UUID) -> ActionResult[None]:
        return self._run(
            "Failed to delete signature template", lambda: self.templates.delete_template(ctx, template_id)
        )

    def duplicate_template(self, ctx: CallerContext, template_id: UUID) -> ActionResult[SignatureTemplateDetail]:
        return self._run(
            "Failed to duplicate signature template",
            lambda: self._detail(ctx, self.templates.duplicate_template(ctx, template_id).id),
        )

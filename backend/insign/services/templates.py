from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List
from uuid import UUID

from insign.core.errors import NotFoundError, ValidationError
from insign.models.base import utcnow
from insign.models.signature import ParticipantRole
from insign.models.template import SignatureTemplate, TemplateField, TemplateParticipant
from insign.repositories.template import SignatureTemplateRepository
from insign.schemas.template import SignatureTemplateCreate, SignatureTemplateUpdate
from insign.services.workflow import CallerContext, validate_field_geometry

logger = logging.getLogger("insign.templates")

TEMPLATE_NOT_FOUND_MESSAGE = "Template not found"
COPY_SUFFIX = " (Copy)"
_MAX_NAME_LENGTH = 255


class SignatureTemplateService:
    """Reusable request layouts: participant slots identified by label, and fields bound to those slots."""

    def __init__(
        self,
        repository: SignatureTemplateRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock

    def list_templates(self, ctx: CallerContext) -> List[SignatureTemplate]:
        return self.repository.list_templates(ctx.org_id)

    def get_template(self, ctx: CallerContext, template_id: UUID) -> SignatureTemplate:
        template = self.repository.get_template(template_id, ctx.org_id)
        if template is None:
            raise NotFoundError(TEMPLATE_NOT_FOUND_MESSAGE)
        return template

    def list_participants(self, ctx: CallerContext, template_id: UUID) -> List[TemplateParticipant]:
        return self.repository.list_participants(self.get_template(ctx, template_id).id)

    def list_fields(self, ctx: CallerContext, template_id: UUID) -> List[TemplateField]:
        return self.repository.list_fields(self.get_template(ctx, template_id).id)

    def create_template(self, ctx: CallerContext, payload: SignatureTemplateCreate) -> SignatureTemplate:
        if not payload.participants:
            raise ValidationError("At least one participant is required")
        if not any(item.role.is_required for item in payload.participants):
            raise ValidationError("At least one signer or approver is required")
        roles: dict[str, ParticipantRole] = {}
        for item in payload.participants:
            if item.label in roles:
                raise ValidationError(f"Participant label '{item.label}' is used more than once")
            roles[item.label] = item.role
        for item in payload.fields:
            role = roles.get(item.participant_label)
            if role is None:
                raise ValidationError(f"Field references unknown participant '{item.participant_label}'")
            if role is ParticipantRole.CC:
                raise ValidationError("cc participants cannot be assigned fields")
            validate_field_geometry(
                item.field_type, item.page_number, item.x, item.y, item.width, item.height, item.options
            )

        now = self.clock()
        with self.repository.transaction():
            template = self.repository.add_template(
                SignatureTemplate(
                    org_id=ctx.org_id,
                    name=payload.name,
                    description=payload.description,
                    workflow_type=payload.workflow_type,
                    message=payload.message,
                    created_by_id=ctx.user_id,
                    created_at=now,
                ),
                [
                    TemplateParticipant(
                        label=item.label,
                        role=item.role,
                        order_index=item.order_index,
                        created_at=now,
                    )
                    for item in payload.participants
                ],
                [
                    TemplateField(
                        participant_label=item.participant_label,
                        field_type=item.field_type,
                        page_number=item.page_number,
                        x=item.x,
                        y=item.y,
                        width=item.width,
                        height=item.height,
                        required=item.required,
                        label=item.label,
                        options=item.options,
                        created_at=now,
                    )
                    for item in payload.fields
                ],
            )
        logger.info("Signature template %s created by %s", template.id, ctx.user_id)
        return template

    def update_template(
        self, ctx: CallerContext, template_id: UUID, payload: SignatureTemplateUpdate
    ) -> SignatureTemplate:
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("name", "") is None or changes.get("workflow_type", "") is None:
            raise ValidationError("Name and workflow type cannot be cleared")
        if "name" in changes:
            changes["name"] = changes["name"].strip()
            if not changes["name"]:
                raise ValidationError("Template name is required")

        with self.repository.transaction():
            template = self.get_template(ctx, template_id)
            for key, value in changes.items():
                setattr(template, key, value)
            template.updated_at = self.clock()
            self.repository.save(template)
        return template

    def delete_template(self, ctx: CallerContext, template_id: UUID) -> None:
        with self.repository.transaction():
            template = self.get_template(ctx, template_id)
            self.repository.delete_template(template)
        logger.info("Signature template %s deleted by %s", template_id, ctx.user_id)

    def duplicate_template(self, ctx: CallerContext, template_id: UUID) -> SignatureTemplate:
        now = self.clock()
        with self.repository.transaction():
            source = self.get_template(ctx, template_id)
            name = source.name[: _MAX_NAME_LENGTH - len(COPY_SUFFIX)] + COPY_SUFFIX
            copy = self.repository.add_template(
                SignatureTemplate(
                    org_id=ctx.org_id,
                    name=name,
                    description=source.description,
                    workflow_type=source.workflow_type,
                    message=source.message,
                    created_by_id=ctx.user_id,
                    created_at=now,
                ),
                [
                    TemplateParticipant(
                        label=p.label,
                        role=p.role,
                        order_index=p.order_index,
                        created_at=now,
                    )
                    for p in self.repository.list_participants(source.id)
                ],
                [
                    TemplateField(
                        participant_label=f.participant_label,
                        field_type=f.field_type,
                        page_number=f.page_number,
                        x=f.x,
                        y=f.y,
                        width=f.width,
                        height=f.height,
                        required=f.required,
                        label=f.label,
                        options=list(f.options) if f.options is not None else None,
                        created_at=now,
                    )
                    for f in self.repository.list_fields(source.id)
                ],
            )
        logger.info("Signature template %s duplicated into %s", template_id, copy.id)
        return copy

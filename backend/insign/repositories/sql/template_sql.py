from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import select

from insign.models.template import SignatureTemplate, TemplateField, TemplateParticipant
from insign.repositories.sql.base import SqlRepository


class SqlSignatureTemplateRepository(SqlRepository):
    def add_template(
        self,
        template: SignatureTemplate,
        participants: List[TemplateParticipant],
        fields: List[TemplateField],
    ) -> SignatureTemplate:
        self.session.add(template)
        self.session.flush()
        for participant in participants:
            participant.template_id = template.id
            self.session.add(participant)
        for field in fields:
            field.template_id = template.id
            self.session.add(field)
        self.session.flush()
        return template

    def get_template(self, template_id: UUID, org_id: UUID) -> Optional[SignatureTemplate]:
        statement = select(SignatureTemplate).where(
            SignatureTemplate.id == template_id,
            SignatureTemplate.org_id == org_id,
        )
        return self.session.exec(statement).first()

    def list_templates(self, org_id: UUID) -> List[SignatureTemplate]:
        statement = (
            select(SignatureTemplate)
            .where(SignatureTemplate.org_id == org_id)
            .order_by(SignatureTemplate.created_at.desc())
        )
        return list(self.session.exec(statement).all())

    def list_participants(self, template_id: UUID) -> List[TemplateParticipant]:
        statement = (
            select(TemplateParticipant)
            .where(TemplateParticipant.template_id == template_id)
            .order_by(TemplateParticipant.order_index, TemplateParticipant.created_at)
        )
        return list(self.session.exec(statement).all())

    def list_fields(self, template_id: UUID) -> List[TemplateField]:
        statement = (
            select(TemplateField)
            .where(TemplateField.template_id == template_id)
            .order_by(TemplateField.page_number, TemplateField.y, TemplateField.x)
        )
        return list(self.session.exec(statement).all())

    def delete_template(self, template: SignatureTemplate) -> None:
        template_id = template.id
        self.session.execute(delete(TemplateField).where(TemplateField.template_id == template_id))
        self.session.execute(delete(TemplateParticipant).where(TemplateParticipant.template_id == template_id))
        self.session.delete(template)
        self.session.flush()

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import List, Optional, Protocol
from uuid import UUID

from insign.models.template import SignatureTemplate, TemplateField, TemplateParticipant


class SignatureTemplateRepository(Protocol):
    """Org-scoped storage for signature templates and their participant slots and fields."""

    def transaction(self) -> AbstractContextManager["SignatureTemplateRepository"]:
        ...

    def add_template(
        self,
        template: SignatureTemplate,
        participants: List[TemplateParticipant],
        fields: List[TemplateField],
    ) -> SignatureTemplate:
        ...

    def get_template(self, template_id: UUID, org_id: UUID) -> Optional[SignatureTemplate]:
        ...

    def list_templates(self, org_id: UUID) -> List[SignatureTemplate]:
        ...

    def list_participants(self, template_id: UUID) -> List[TemplateParticipant]:
        ...

    def list_fields(self, template_id: UUID) -> List[TemplateField]:
        ...

    def save(self, entity) -> None:
        ...

    def delete_template(self, template: SignatureTemplate) -> None:
        ...

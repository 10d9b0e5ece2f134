from __future__ import annotations

from typing import Optional, Protocol
from uuid import UUID

from insign.models.document import Document


class DocumentRepository(Protocol):
    """Document store lookup; content is opaque to the signature workflow."""

    def get_document(self, document_id: UUID, org_id: UUID) -> Optional[Document]:
        ...

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from insign.models.document import Document


class SqlDocumentRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_document(self, document_id: UUID, org_id: UUID) -> Optional[Document]:
        statement = select(Document).where(Document.id == document_id, Document.org_id == org_id)
        return self.session.exec(statement).first()

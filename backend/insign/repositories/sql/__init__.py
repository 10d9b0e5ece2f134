from insign.repositories.sql.document_sql import SqlDocumentRepository
from insign.repositories.sql.signature_request_sql import SqlSignatureRequestRepository
from insign.repositories.sql.template_sql import SqlSignatureTemplateRepository

__all__ = ["SqlDocumentRepository", "SqlSignatureRequestRepository", "SqlSignatureTemplateRepository"]

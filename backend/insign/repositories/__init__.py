from insign.repositories.document import DocumentRepository
from insign.repositories.signature_request import SignatureRequestRepository
from insign.repositories.template import SignatureTemplateRepository

__all__ = ["DocumentRepository", "SignatureRequestRepository", "SignatureTemplateRepository"]

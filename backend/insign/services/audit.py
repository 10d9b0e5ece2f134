from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Mapping
from uuid import UUID

from insign.models.audit import AuditAction, SignatureAuditLog
from insign.models.base import as_utc, utcnow
from insign.repositories.signature_request import SignatureRequestRepository

_REDACTED_KEY_MARKERS = ("token", "secret")
_MAX_PAGE_SIZE = 200


def page_window(page: int, page_size: int) -> tuple[int, int]:
    """Clamp a requested page and page size to the supported range."""
    return max(page, 1), min(max(page_size, 1), _MAX_PAGE_SIZE)


def _scrub(details: Mapping[str, Any] | None) -> dict[str, Any]:
    """Drop credential-like keys and make values JSON-friendly."""
    clean: dict[str, Any] = {}
    for key, value in (details or {}).items():
        if any(marker in key.lower() for marker in _REDACTED_KEY_MARKERS):
            continue
        if isinstance(value, Mapping):
            value = _scrub(value)
        elif isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        clean[key] = value
    return clean


class AuditService:
    """
    Appends entries to a request's audit trail inside the caller's transaction.

    Nothing here commits: an entry is persisted together with the state change
    that produced it, or not at all.
    """

    def __init__(
        self,
        repository: SignatureRequestRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock

    def record(
        self,
        request_id: UUID,
        action: AuditAction,
        participant_id: UUID | None = None,
        actor_id: UUID | None = None,
        metadata: Mapping[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SignatureAuditLog:
        entry = SignatureAuditLog(
            request_id=request_id,
            participant_id=participant_id,
            action=action,
            actor_id=actor_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=_scrub(metadata),
            timestamp=self.clock(),
        )
        return self.repository.append_audit(entry)

    def trail(self, request_id: UUID) -> List[SignatureAuditLog]:
        return self.repository.list_audit(request_id)

    def list_events(
        self,
        org_id: UUID,
        action: AuditAction | None = None,
        request_id: UUID | None = None,
        actor_id: UUID | None = None,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[List[tuple[SignatureAuditLog, str]], int]:
        """Organization-wide trail, newest first, paged; each entry comes with its request title."""
        page, page_size = page_window(page, page_size)
        return self.repository.list_org_audit(
            org_id,
            action=action,
            request_id=request_id,
            actor_id=actor_id,
            start_at=as_utc(start_at),
            end_at=as_utc(end_at),
            offset=(page - 1) * page_size,
            limit=page_size,
        )

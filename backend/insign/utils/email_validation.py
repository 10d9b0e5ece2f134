from __future__ import annotations

from functools import lru_cache

from email_validator import EmailNotValidError, validate_email


@lru_cache(maxsize=256)
def _validate_format_only(candidate: str) -> str:
    """Normalize addresses validating only syntax/IDNA information."""
    info = validate_email(candidate, check_deliverability=False)
    return info.normalized or info.email


def normalize_email(value: str) -> str:
    """Return the lower-cased, normalized form of a participant address.

    Deliverability is not checked: the address is only used as an identity and
    delivery belongs to the notification dispatcher.
    """
    candidate = (value or "").strip()
    if not candidate:
        raise ValueError("Email is required")
    try:
        return _validate_format_only(candidate.lower())
    except EmailNotValidError as exc:  # pragma: no cover - library error text varies
        raise ValueError(f"Invalid email: {exc}") from exc

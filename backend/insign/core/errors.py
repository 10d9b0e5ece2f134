"""Error taxonomy shared by the signature services and the HTTP layer."""

from __future__ import annotations


class InsignError(Exception):
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthError(InsignError):
    """Missing or invalid session, or an access token that no longer grants access."""

    code = "unauthorized"


class NotFoundError(InsignError):
    """Entity absent, or owned by another organization."""

    code = "not_found"


class StateError(InsignError):
    """Operation not allowed in the current status."""

    code = "invalid_state"


class ConflictError(StateError):
    """A concurrent transition won the race for the same rows."""

    code = "conflict"


class ValidationError(InsignError):
    code = "validation_error"

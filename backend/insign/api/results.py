from typing import TypeVar

from fastapi import HTTPException

from insign.schemas.common import ActionResult

T = TypeVar("T")

_STATUS_BY_CODE = {
    "unauthorized": 401,
    "not_found": 404,
    "invalid_state": 409,
    "conflict": 409,
    "validation_error": 422,
}


def unwrap(result: ActionResult[T]) -> T:
    """Return the result data or raise the matching HTTP error."""
    if result.success:
        return result.data
    code = result.code or "error"
    raise HTTPException(
        status_code=_STATUS_BY_CODE.get(code, 500),
        detail={"code": code, "message": result.error},
    )

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Timestamped(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created_at: datetime
    updated_at: datetime | None = None


class IDModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID


class ActionResult(BaseModel, Generic[T]):
    """Outcome of a workflow action: either ``data`` or an ``error`` with its ``code``."""

    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "ActionResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "error") -> "ActionResult[T]":
        return cls(success=False, error=error, code=code)

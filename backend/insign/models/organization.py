from typing import List, TYPE_CHECKING

from sqlmodel import Field, Relationship

from insign.models.base import TimestampedModel, UUIDModel

if TYPE_CHECKING:  # pragma: no cover
    from insign.models.user import User


class Organization(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(index=True)
    domain: str = Field(unique=True, index=True)
    is_active: bool = Field(default=True)

    users: List["User"] = Relationship(back_populates="organization")

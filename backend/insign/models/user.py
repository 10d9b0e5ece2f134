from uuid import UUID

from sqlmodel import Field, Relationship

from insign.models.base import TimestampedModel, UUIDModel
from insign.models.organization import Organization


class User(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "users"

    org_id: UUID = Field(foreign_key="organizations.id", index=True)
    email: str = Field(index=True, unique=True)
    full_name: str | None = Field(default=None)
    is_active: bool = Field(default=True)

    organization: Organization = Relationship(back_populates="users")

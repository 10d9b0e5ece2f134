from uuid import UUID

from sqlmodel import Field

from insign.models.base import TimestampedModel, UUIDModel


class Document(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "documents"

    org_id: UUID = Field(foreign_key="organizations.id", index=True)
    name: str
    storage_path: str
    mime_type: str = Field(default="application/pdf", max_length=128)
    created_by_id: UUID = Field(foreign_key="users.id")

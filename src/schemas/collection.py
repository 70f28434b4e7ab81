"""Pydantic schemas for collection operations."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_title(v: str | None) -> str | None:
    if v is None:
        return None
    stripped = v.strip()
    if not stripped:
        raise ValueError("Title cannot be empty")
    return stripped


class CollectionCreate(BaseModel):
    """Schema for creating a collection."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    parent_id: UUID | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        """Trim the title and reject blank ones."""
        return _strip_title(v)


class CollectionUpdate(BaseModel):
    """
    Schema for updating a collection.

    `parent_id` is applied only when explicitly set, so it can be cleared with None.
    """

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    parent_id: UUID | None = None
    sort_order: int | None = None
    is_public: bool | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str | None:
        """Trim the title and reject blank ones."""
        return _strip_title(v)


class CollectionResponse(BaseModel):
    """Schema for collection responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    title: str
    description: str | None
    parent_id: UUID | None
    is_default: bool
    is_public: bool
    share_slug: str | None
    sort_order: int
    created_at: datetime
    updated_at: datetime


class CollectionWithCount(CollectionResponse):
    """Collection plus the number of bookmarks in it."""

    bookmark_count: int = 0


class CollectionDeleteResult(BaseModel):
    """Outcome of deleting a collection."""

    moved_count: int

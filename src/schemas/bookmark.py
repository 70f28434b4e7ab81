"""Pydantic schemas for bookmark operations."""
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.bookmark import BookmarkType
from schemas.validators import validate_note_length, validate_tag_names, validate_title_length


class BookmarkCreate(BaseModel):
    """Schema for creating a new bookmark."""

    url: str = Field(..., min_length=1)
    collection_id: UUID | None = None
    title: str | None = None
    excerpt: str | None = None
    cover_url: str | None = None
    note: str | None = None
    tags: list[str] = []
    is_favorite: bool = False
    snapshot_path: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str]:
        """Trim tag names and drop blanks and case duplicates."""
        return validate_tag_names(v)

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str | None) -> str | None:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("note")
    @classmethod
    def check_note_length(cls, v: str | None) -> str | None:
        """Validate note length."""
        return validate_note_length(v)


class BookmarkUpdate(BaseModel):
    """
    Schema for updating an existing bookmark.

    Only fields that were explicitly set are applied. `tags`, when given, replaces
    the bookmark's full tag set.
    """

    title: str | None = None
    excerpt: str | None = None
    cover_url: str | None = None
    note: str | None = None
    collection_id: UUID | None = None
    is_favorite: bool | None = None
    is_broken: bool | None = None
    sort_order: int | None = None
    tags: list[str] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        """Trim tag names if provided."""
        if v is None:
            return None
        return validate_tag_names(v)

    @field_validator("title")
    @classmethod
    def check_title_length(cls, v: str | None) -> str | None:
        """Validate title length."""
        return validate_title_length(v)

    @field_validator("note")
    @classmethod
    def check_note_length(cls, v: str | None) -> str | None:
        """Validate note length."""
        return validate_note_length(v)


class BookmarkFilters(BaseModel):
    """
    Filters for listing bookmarks.

    Every filter that is set must hold (AND semantics). `tags` requires the bookmark
    to carry every listed tag. `date_from`/`date_to` are inclusive on created_at.
    """

    collection_id: UUID | None = None
    tags: list[str] = []
    type: BookmarkType | None = None
    domain: str | None = None
    is_favorite: bool | None = None
    is_broken: bool | None = None
    is_duplicate: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None
    sort_by: Literal["created_at", "updated_at", "title", "sort_order"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str]:
        """Trim tag names and drop blanks."""
        return validate_tag_names(v)

    @model_validator(mode="after")
    def check_date_range(self) -> "BookmarkFilters":
        """Reject an inverted date range."""
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    collection_id: UUID
    url: str
    normalized_url: str
    title: str
    excerpt: str | None
    cover_url: str | None
    note: str | None
    domain: str
    type: BookmarkType
    is_duplicate: bool
    is_broken: bool
    is_favorite: bool
    sort_order: int
    tags: list[str] = []
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def extract_tag_names(cls, data: object) -> object:
        """Read tag names off the ORM relationship when built from a model."""
        tag_objects = getattr(data, "tag_objects", None)
        if tag_objects is not None:
            return {
                **{name: getattr(data, name) for name in cls.model_fields if name != "tags"},
                "tags": sorted(tag.name for tag in tag_objects),
            }
        return data


class DuplicateCheckResponse(BaseModel):
    """Result of checking whether a URL is already saved."""

    normalized_url: str
    is_duplicate: bool
    existing_ids: list[UUID]

"""Pydantic schemas for tag operations."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas.validators import validate_tag_name


class TagCreate(BaseModel):
    """Schema for creating a tag."""

    name: str = Field(..., min_length=1)
    color: str | None = Field(default=None, max_length=32)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        """Trim and validate the tag name."""
        return validate_tag_name(v)


class TagUpdate(BaseModel):
    """Schema for renaming or recoloring a tag."""

    name: str | None = None
    color: str | None = Field(default=None, max_length=32)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str | None) -> str | None:
        """Trim and validate the new tag name if provided."""
        if v is None:
            return None
        return validate_tag_name(v)


class TagResponse(BaseModel):
    """Schema for tag responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    normalized_name: str
    color: str | None
    created_at: datetime


class TagCount(BaseModel):
    """Schema for a tag with its bookmark count."""

    id: UUID
    name: str
    color: str | None
    count: int


class TagMergeResult(BaseModel):
    """Outcome of merging one tag into another."""

    target_tag_id: UUID
    affected_bookmark_count: int

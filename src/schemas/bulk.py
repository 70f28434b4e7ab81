"""Pydantic schemas for bulk bookmark operations."""
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schemas.validators import validate_tag_names


class BulkAction(StrEnum):
    """Action applied by a bulk operation."""

    ADD_TAGS = "addTags"
    REMOVE_TAGS = "removeTags"
    MOVE = "move"
    DELETE = "delete"
    FAVORITE = "favorite"
    UNFAVORITE = "unfavorite"
    REORDER = "reorder"


class ReorderItem(BaseModel):
    """One (item, sort order) pair of a reorder."""

    id: UUID
    sort_order: int


class BulkPayload(BaseModel):
    """
    Action-specific data for a bulk operation.

    Tag actions accept names (`tags`) or ids (`tag_ids`); `collection_id` is the
    move target; `orders` drives reorder.
    """

    tags: list[str] = []
    tag_ids: list[UUID] = []
    collection_id: UUID | None = None
    orders: list[ReorderItem] = []

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str]:
        """Trim tag names and drop blanks and case duplicates."""
        return validate_tag_names(v)


class BulkRequest(BaseModel):
    """Schema for a bulk operation request."""

    item_ids: list[UUID] = Field(default_factory=list)
    action: BulkAction
    payload: BulkPayload = Field(default_factory=BulkPayload)


class BulkResult(BaseModel):
    """Outcome of a bulk operation."""

    action: BulkAction
    affected_count: int

"""Pydantic schemas for collection sharing."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from models.permission import PermissionRole


class ShareCreate(BaseModel):
    """Schema for sharing a collection with another user."""

    user_id: UUID
    role: PermissionRole = PermissionRole.VIEWER


class ShareResponse(BaseModel):
    """Schema for a collection share."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    collection_id: UUID
    user_id: UUID
    role: PermissionRole
    created_at: datetime

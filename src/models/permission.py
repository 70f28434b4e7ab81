"""Collection sharing grants."""
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.collection import Collection
    from models.user import User


class PermissionRole(StrEnum):
    """Role granted to a non-owner on a shared collection."""

    VIEWER = "viewer"
    EDITOR = "editor"


class CollectionPermission(Base, UUIDv7Mixin, TimestampMixin):
    """
    A share of one collection with one user.

    The owner never has a row here: ownership is derived from Collection.owner_id.
    """

    __tablename__ = "collection_permissions"
    __table_args__ = (
        UniqueConstraint("collection_id", "user_id", name="uq_collection_permissions_collection_user"),
    )

    collection_id: Mapped[UUID] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[PermissionRole] = mapped_column(
        Enum(
            PermissionRole,
            native_enum=False,
            length=16,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=PermissionRole.VIEWER,
    )

    collection: Mapped["Collection"] = relationship(back_populates="permissions")
    user: Mapped["User"] = relationship()

"""Collection model - the folders bookmarks live in."""
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.permission import CollectionPermission
    from models.user import User

DEFAULT_COLLECTION_TITLE = "Unsorted"


class Collection(Base, UUIDv7Mixin, TimestampMixin):
    """
    Collection model - a user-owned, optionally nested and shared folder.

    Every user has exactly one default collection ("Unsorted") that receives
    bookmarks saved without a collection and bookmarks orphaned by a collection
    delete. A collection is public exactly when it carries a share slug.
    """

    __tablename__ = "collections"
    __table_args__ = (
        # One default collection per owner
        Index(
            "uq_collections_owner_default",
            "owner_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default"),
        ),
        CheckConstraint(
            "is_public = (share_slug IS NOT NULL)",
            name="ck_collections_public_has_slug",
        ),
    )

    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("collections.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    share_slug: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    owner: Mapped["User"] = relationship(back_populates="collections")
    parent: Mapped["Collection | None"] = relationship(
        remote_side="Collection.id",
        back_populates="children",
    )
    children: Mapped[list["Collection"]] = relationship(
        back_populates="parent",
        passive_deletes=True,
    )
    permissions: Mapped[list["CollectionPermission"]] = relationship(
        back_populates="collection",
        passive_deletes=True,
    )

"""Bookmark model for storing user bookmarks."""
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.tag import bookmark_tags

if TYPE_CHECKING:
    from models.collection import Collection
    from models.tag import Tag
    from models.user import User


class BookmarkType(StrEnum):
    """Content type inferred from the bookmarked URL."""

    LINK = "link"
    ARTICLE = "article"
    VIDEO = "video"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"


class Bookmark(Base, UUIDv7Mixin, TimestampMixin):
    """
    Bookmark model - stores URLs with metadata and tags.

    `normalized_url` is always the canonical form of `url` and is the key for
    duplicate detection. `is_duplicate` is decided once, at creation time.
    """

    __tablename__ = "bookmarks"
    __table_args__ = (
        Index("ix_bookmarks_user_id_normalized_url", "user_id", "normalized_url"),
        Index("ix_bookmarks_collection_id_sort_order", "collection_id", "sort_order"),
    )

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # RESTRICT: a collection delete must move its bookmarks first
    collection_id: Mapped[UUID] = mapped_column(
        ForeignKey("collections.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[BookmarkType] = mapped_column(
        Enum(
            BookmarkType,
            native_enum=False,
            length=16,
            values_callable=lambda types: [t.value for t in types],
        ),
        nullable=False,
        default=BookmarkType.ARTICLE,
    )
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    is_broken: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    is_favorite: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Path of the archived page snapshot in blob storage, if one was taken
    snapshot_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="bookmarks")
    collection: Mapped["Collection"] = relationship()
    tag_objects: Mapped[list["Tag"]] = relationship(
        secondary=bookmark_tags,
        back_populates="bookmarks",
        passive_deletes=True,
    )

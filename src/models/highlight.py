"""Highlight model - text annotations attached to a bookmark."""
from uuid import UUID

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UUIDv7Mixin


class Highlight(Base, UUIDv7Mixin, TimestampMixin):
    """
    Highlight model.

    Owned by the annotation subsystem; bookmark deletes clear these rows in the
    same transaction.
    """

    __tablename__ = "highlights"

    bookmark_id: Mapped[UUID] = mapped_column(
        ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(16), nullable=False, default="yellow")

"""SQLAlchemy models."""
from models.base import Base, TimestampMixin, UUIDv7Mixin
from models.tag import Tag, bookmark_tags  # Must be before bookmark due to import
from models.bookmark import Bookmark, BookmarkType
from models.collection import DEFAULT_COLLECTION_TITLE, Collection
from models.highlight import Highlight
from models.permission import CollectionPermission, PermissionRole
from models.user import User

__all__ = [
    "DEFAULT_COLLECTION_TITLE",
    "Base",
    "Bookmark",
    "BookmarkType",
    "Collection",
    "CollectionPermission",
    "Highlight",
    "PermissionRole",
    "Tag",
    "TimestampMixin",
    "UUIDv7Mixin",
    "User",
    "bookmark_tags",
]

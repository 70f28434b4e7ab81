"""
Shared exceptions for service layer operations.

Every failure a service operation can report is one of the ErrorCode kinds below.
Callers can branch on the exception class or on its `code`. A resource owned by
another user is reported exactly like a missing one.
"""
import functools
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class ErrorCode(StrEnum):
    """Closed set of error kinds reported by the service layer."""

    INVALID_URL = "InvalidURL"
    NOT_FOUND = "NotFound"
    COLLECTION_NOT_FOUND = "CollectionNotFound"
    CANNOT_DELETE_DEFAULT = "CannotDeleteDefault"
    CANNOT_MODIFY_DEFAULT = "CannotModifyDefault"
    SLUG_GENERATION_FAILED = "SlugGenerationFailed"
    TAGS_REQUIRED = "TagsRequired"
    ORDERS_REQUIRED = "OrdersRequired"
    NO_VALID_ITEMS = "NoValidItems"
    SAME_TAG = "SameTag"
    SOURCE_NOT_FOUND = "SourceNotFound"
    TARGET_NOT_FOUND = "TargetNotFound"
    ALREADY_EXISTS = "AlreadyExists"
    INVALID_PARENT = "InvalidParent"
    CANNOT_SHARE_WITH_SELF = "CannotShareWithSelf"
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class BookmarkCoreError(Exception):
    """Base class for all service layer errors."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidUrlError(BookmarkCoreError):
    """Raised when a URL does not parse or does not use http/https."""

    code = ErrorCode.INVALID_URL

    def __init__(self, url: object, reason: str = "Invalid URL format") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"{reason}: {url!r}")


class NotFoundError(BookmarkCoreError):
    """Raised when a resource does not exist or is not visible to the caller."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: object) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class CollectionNotFoundError(BookmarkCoreError):
    """Raised when a referenced collection is missing or not owned by the caller."""

    code = ErrorCode.COLLECTION_NOT_FOUND

    def __init__(self, collection_id: object) -> None:
        self.collection_id = collection_id
        super().__init__(f"Collection not found: {collection_id}")


class CannotDeleteDefaultError(BookmarkCoreError):
    """Raised when deleting the user's default "Unsorted" collection."""

    code = ErrorCode.CANNOT_DELETE_DEFAULT

    def __init__(self) -> None:
        super().__init__("Cannot delete the default Unsorted collection")


class CannotModifyDefaultError(BookmarkCoreError):
    """Raised when renaming the user's default "Unsorted" collection."""

    code = ErrorCode.CANNOT_MODIFY_DEFAULT

    def __init__(self) -> None:
        super().__init__("Cannot rename the default Unsorted collection")


class SlugGenerationFailedError(BookmarkCoreError):
    """Raised when no unused share slug was found within the attempt budget."""

    code = ErrorCode.SLUG_GENERATION_FAILED

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Failed to generate a unique share slug after {attempts} attempts")


class TagsRequiredError(BookmarkCoreError):
    """Raised when a tag bulk action resolves to no tags."""

    code = ErrorCode.TAGS_REQUIRED

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Tags are required for {action} action")


class OrdersRequiredError(BookmarkCoreError):
    """Raised when a reorder receives no (item, sort order) pairs."""

    code = ErrorCode.ORDERS_REQUIRED

    def __init__(self) -> None:
        super().__init__("Orders are required for reorder action")


class NoValidItemsError(BookmarkCoreError):
    """Raised when none of the requested items belong to the caller."""

    code = ErrorCode.NO_VALID_ITEMS

    def __init__(self) -> None:
        super().__init__("No valid bookmarks found")


class SameTagError(BookmarkCoreError):
    """Raised when merging a tag into itself."""

    code = ErrorCode.SAME_TAG

    def __init__(self) -> None:
        super().__init__("Cannot merge a tag into itself")


class SourceNotFoundError(BookmarkCoreError):
    """Raised when the source tag of a merge is missing or not owned."""

    code = ErrorCode.SOURCE_NOT_FOUND

    def __init__(self, tag_id: object) -> None:
        self.tag_id = tag_id
        super().__init__(f"Source tag not found: {tag_id}")


class TargetNotFoundError(BookmarkCoreError):
    """Raised when the target tag of a merge is missing or not owned."""

    code = ErrorCode.TARGET_NOT_FOUND

    def __init__(self, tag_id: object) -> None:
        self.tag_id = tag_id
        super().__init__(f"Target tag not found: {tag_id}")


class AlreadyExistsError(BookmarkCoreError):
    """Raised when creating or renaming something onto an existing unique key."""

    code = ErrorCode.ALREADY_EXISTS

    def __init__(self, resource: str, key: object) -> None:
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} already exists: {key}")


class InvalidParentError(BookmarkCoreError):
    """Raised when a collection parent would create a cycle."""

    code = ErrorCode.INVALID_PARENT

    def __init__(self, collection_id: object, parent_id: object) -> None:
        self.collection_id = collection_id
        self.parent_id = parent_id
        super().__init__(f"Collection {collection_id} cannot be moved under {parent_id}")


class CannotShareWithSelfError(BookmarkCoreError):
    """Raised when an owner shares a collection with themselves."""

    code = ErrorCode.CANNOT_SHARE_WITH_SELF

    def __init__(self) -> None:
        super().__init__("Cannot share a collection with yourself")


class StorageUnavailableError(BookmarkCoreError):
    """
    Raised when the database connection fails mid-operation.

    The operation had no effect and may be retried by the caller.
    """

    code = ErrorCode.STORAGE_UNAVAILABLE

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(f"Storage unavailable: {detail}" if detail else "Storage unavailable")


def translate_storage_errors(
    func: Callable[P, Awaitable[R]],
) -> Callable[P, Awaitable[R]]:
    """
    Re-raise connection-level database failures as StorageUnavailableError.

    Constraint violations and programming errors are left untouched.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.warning("storage_unavailable operation=%s error=%s", func.__name__, e)
            raise StorageUnavailableError(str(e.orig or e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning("storage_unavailable operation=%s error=%s", func.__name__, e)
                raise StorageUnavailableError(str(e.orig or e)) from e
            raise

    return wrapper

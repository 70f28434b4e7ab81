"""
Service layer for collection lifecycle operations.

Every user has exactly one default collection ("Unsorted"). It is created on
demand, can't be deleted or renamed, and receives the bookmarks of any collection
that is deleted.
"""
import logging
import secrets
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from models.bookmark import Bookmark
from models.collection import DEFAULT_COLLECTION_TITLE, Collection
from models.permission import CollectionPermission
from schemas.collection import (
    CollectionCreate,
    CollectionDeleteResult,
    CollectionResponse,
    CollectionUpdate,
    CollectionWithCount,
)
from services.exceptions import (
    AlreadyExistsError,
    CannotDeleteDefaultError,
    CannotModifyDefaultError,
    InvalidParentError,
    NotFoundError,
    SlugGenerationFailedError,
    translate_storage_errors,
)

logger = logging.getLogger(__name__)

SHARE_SLUG_LENGTH = 8


def generate_share_slug() -> str:
    """Random URL-safe slug: 6 random bytes, base64url encoded (8 characters)."""
    return secrets.token_urlsafe(6)[:SHARE_SLUG_LENGTH]


def _is_reserved_title(title: str) -> bool:
    return title.strip().lower() == DEFAULT_COLLECTION_TITLE.lower()


async def _get_default(db: AsyncSession, user_id: UUID) -> Collection | None:
    result = await db.execute(
        select(Collection).where(
            Collection.owner_id == user_id,
            Collection.is_default.is_(True),
        ),
    )
    return result.scalar_one_or_none()


async def _get_owned(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
    for_update: bool = False,
) -> Collection | None:
    stmt = select(Collection).where(
        Collection.id == collection_id,
        Collection.owner_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def ensure_default(db: AsyncSession, user_id: UUID) -> Collection:
    """
    Return the user's "Unsorted" collection, creating it if it doesn't exist.

    Concurrent callers are serialized by the one-default-per-owner unique index:
    the loser of the race reads the winner's row.
    """
    existing = await _get_default(db, user_id)
    if existing is not None:
        return existing

    collection = Collection(
        owner_id=user_id,
        title=DEFAULT_COLLECTION_TITLE,
        is_default=True,
        sort_order=0,
    )
    try:
        async with db.begin_nested():
            db.add(collection)
            await db.flush()
    except IntegrityError:
        existing = await _get_default(db, user_id)
        if existing is None:
            raise
        return existing
    logger.info("default_collection_created user_id=%s", user_id)
    return collection


async def get_collection(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
    for_update: bool = False,
) -> Collection | None:
    """
    Get a collection by ID, scoped to its owner. Returns None if not found or wrong user.

    Pass `for_update` when the caller writes into the collection afterwards.
    """
    return await _get_owned(db, user_id, collection_id, for_update=for_update)


async def get_public_collection(db: AsyncSession, share_slug: str) -> Collection:
    """
    Look up a public collection by its share slug. No principal is required.

    Raises:
        NotFoundError: If no public collection has this slug.
    """
    result = await db.execute(
        select(Collection).where(
            Collection.share_slug == share_slug,
            Collection.is_public.is_(True),
        ),
    )
    collection = result.scalar_one_or_none()
    if collection is None:
        raise NotFoundError("Collection", share_slug)
    return collection


async def list_collections(db: AsyncSession, user_id: UUID) -> list[Collection]:
    """
    List collections the user can see: their own first, then ones shared with them.

    Each group is ordered by sort order, then creation time.
    """
    owned = await db.execute(
        select(Collection)
        .where(Collection.owner_id == user_id)
        .order_by(Collection.sort_order.asc(), Collection.created_at.asc()),
    )
    shared = await db.execute(
        select(Collection)
        .join(CollectionPermission, CollectionPermission.collection_id == Collection.id)
        .where(
            CollectionPermission.user_id == user_id,
            Collection.owner_id != user_id,
        )
        .order_by(Collection.sort_order.asc(), Collection.created_at.asc()),
    )
    return list(owned.scalars()) + list(shared.scalars())


async def list_collections_with_counts(
    db: AsyncSession,
    user_id: UUID,
) -> list[CollectionWithCount]:
    """List the user's own collections with the number of bookmarks in each."""
    count = func.count(Bookmark.id)
    result = await db.execute(
        select(Collection, count.label("bookmark_count"))
        .outerjoin(Bookmark, Bookmark.collection_id == Collection.id)
        .where(Collection.owner_id == user_id)
        .group_by(Collection.id)
        .order_by(Collection.sort_order.asc(), Collection.created_at.asc()),
    )
    return [
        CollectionWithCount(
            **CollectionResponse.model_validate(collection).model_dump(),
            bookmark_count=bookmark_count,
        )
        for collection, bookmark_count in result.all()
    ]


async def _validate_parent(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID | None,
    parent_id: UUID | None,
) -> None:
    """
    Check that `parent_id` is an owned collection and not a descendant of `collection_id`.

    Walks up from the new parent; the visited set bounds the walk even if the
    stored hierarchy already contains a cycle.
    """
    if parent_id is None:
        return
    visited: set[UUID] = set()
    if collection_id is not None:
        visited.add(collection_id)

    current: UUID | None = parent_id
    while current is not None:
        if current in visited:
            raise InvalidParentError(collection_id, parent_id)
        visited.add(current)
        row = (await db.execute(
            select(Collection.owner_id, Collection.parent_id).where(Collection.id == current),
        )).one_or_none()
        if row is None or row.owner_id != user_id:
            raise InvalidParentError(collection_id, parent_id)
        current = row.parent_id


@translate_storage_errors
async def create_collection(
    db: AsyncSession,
    user_id: UUID,
    data: CollectionCreate,
) -> Collection:
    """
    Create a collection at the end of the user's collection order.

    Raises:
        AlreadyExistsError: If the title is the reserved default title.
        InvalidParentError: If the parent is missing or not owned by the user.
    """
    if _is_reserved_title(data.title):
        raise AlreadyExistsError("Collection", data.title)
    await _validate_parent(db, user_id, None, data.parent_id)

    max_order = (await db.execute(
        select(func.max(Collection.sort_order)).where(Collection.owner_id == user_id),
    )).scalar()
    collection = Collection(
        owner_id=user_id,
        title=data.title,
        description=data.description,
        parent_id=data.parent_id,
        sort_order=(max_order if max_order is not None else -1) + 1,
    )
    db.add(collection)
    await db.flush()
    await db.refresh(collection)
    return collection


@translate_storage_errors
async def update_collection(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
    data: CollectionUpdate,
) -> Collection:
    """
    Update a collection's title, description, sort order, parent, or visibility.

    Raises:
        NotFoundError: If the collection doesn't exist or isn't owned by the user.
        CannotModifyDefaultError: If renaming the default collection.
        AlreadyExistsError: If renaming a collection to the reserved default title.
        InvalidParentError: If the new parent would create a cycle.
    """
    collection = await _get_owned(db, user_id, collection_id, for_update=True)
    if collection is None:
        raise NotFoundError("Collection", collection_id)

    updates = data.model_dump(exclude_unset=True)
    make_public_flag = updates.pop("is_public", None)

    new_title = updates.get("title")
    if new_title is not None and new_title != collection.title:
        if collection.is_default:
            raise CannotModifyDefaultError()
        if _is_reserved_title(new_title):
            raise AlreadyExistsError("Collection", new_title)
    if "parent_id" in updates:
        await _validate_parent(db, user_id, collection.id, updates["parent_id"])

    async with db.begin_nested():
        for field, value in updates.items():
            if value is None and field in ("title", "sort_order"):
                continue
            setattr(collection, field, value)
        await db.flush()

        if make_public_flag is True:
            await make_public(db, user_id, collection_id)
        elif make_public_flag is False:
            await make_private(db, user_id, collection_id)
    await db.refresh(collection)
    return collection


@translate_storage_errors
async def delete_collection(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
) -> CollectionDeleteResult:
    """
    Delete a collection, moving its bookmarks to the user's default collection.

    Child collections are lifted to the deleted collection's parent and its shares
    are removed. No bookmark is ever deleted. Everything happens in one savepoint.

    Returns:
        CollectionDeleteResult with the number of bookmarks moved.

    Raises:
        NotFoundError: If the collection doesn't exist or isn't owned by the user.
        CannotDeleteDefaultError: If the collection is the default collection.
    """
    collection = await _get_owned(db, user_id, collection_id, for_update=True)
    if collection is None:
        raise NotFoundError("Collection", collection_id)
    if collection.is_default:
        raise CannotDeleteDefaultError()

    async with db.begin_nested():
        default = await ensure_default(db, user_id)
        moved = await db.execute(
            update(Bookmark)
            .where(Bookmark.collection_id == collection_id)
            .values(collection_id=default.id),
        )
        await db.execute(
            update(Collection)
            .where(Collection.parent_id == collection_id)
            .values(parent_id=collection.parent_id),
        )
        await db.execute(
            delete(CollectionPermission).where(CollectionPermission.collection_id == collection_id),
        )
        await db.execute(delete(Collection).where(Collection.id == collection_id))

    moved_count = moved.rowcount
    logger.info(
        "collection_deleted user_id=%s collection_id=%s moved=%d",
        user_id, collection_id, moved_count,
    )
    return CollectionDeleteResult(moved_count=moved_count)


@translate_storage_errors
async def make_public(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
) -> Collection:
    """
    Publish a collection under a new random share slug.

    Idempotent: an already public collection keeps its slug. A slug that is
    already taken (seen up front or reported by the unique constraint) triggers a
    new attempt, up to SHARE_SLUG_MAX_ATTEMPTS.

    Raises:
        NotFoundError: If the collection doesn't exist or isn't owned by the user.
        SlugGenerationFailedError: If every attempt collided.
    """
    collection = await _get_owned(db, user_id, collection_id, for_update=True)
    if collection is None:
        raise NotFoundError("Collection", collection_id)
    if collection.is_public:
        return collection

    max_attempts = get_settings().share_slug_max_attempts
    for attempt in range(1, max_attempts + 1):
        slug = generate_share_slug()
        taken = await db.execute(select(Collection.id).where(Collection.share_slug == slug))
        if taken.scalar_one_or_none() is not None:
            logger.warning(
                "share_slug_collision collection_id=%s attempt=%d", collection_id, attempt,
            )
            continue
        try:
            async with db.begin_nested():
                await db.execute(
                    update(Collection)
                    .where(Collection.id == collection_id)
                    .values(is_public=True, share_slug=slug)
                    .execution_options(synchronize_session=False),
                )
        except IntegrityError:
            logger.warning(
                "share_slug_collision collection_id=%s attempt=%d", collection_id, attempt,
            )
            continue
        await db.refresh(collection)
        logger.info("collection_made_public collection_id=%s", collection_id)
        return collection

    raise SlugGenerationFailedError(max_attempts)


@translate_storage_errors
async def make_private(
    db: AsyncSession,
    user_id: UUID,
    collection_id: UUID,
) -> Collection:
    """
    Unpublish a collection. The public flag and share slug are cleared together.

    Raises:
        NotFoundError: If the collection doesn't exist or isn't owned by the user.
    """
    collection = await _get_owned(db, user_id, collection_id, for_update=True)
    if collection is None:
        raise NotFoundError("Collection", collection_id)
    if not collection.is_public:
        return collection

    await db.execute(
        update(Collection)
        .where(Collection.id == collection_id)
        .values(is_public=False, share_slug=None)
        .execution_options(synchronize_session=False),
    )
    await db.refresh(collection)
    logger.info("collection_made_private collection_id=%s", collection_id)
    return collection

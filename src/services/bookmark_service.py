"""Service layer for bookmark CRUD operations."""
import logging
import math
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import get_settings
from models.base import utcnow
from models.bookmark import Bookmark
from models.highlight import Highlight
from models.tag import Tag, bookmark_tags
from schemas.bookmark import (
    BookmarkCreate,
    BookmarkFilters,
    BookmarkUpdate,
    DuplicateCheckResponse,
)
from schemas.bulk import ReorderItem
from services.blob_cleanup import queue_blob_delete
from services.collection_service import ensure_default, get_collection
from services.exceptions import (
    CollectionNotFoundError,
    NoValidItemsError,
    NotFoundError,
    OrdersRequiredError,
    translate_storage_errors,
)
from services.permission_service import can_view_collection
from services.tag_normalizer import normalize_tag_names
from services.tag_service import resolve_or_create_tags
from services.url_normalizer import (
    derive_title_from_url,
    detect_bookmark_type,
    extract_domain,
    normalize_url,
)
from services.utils import escape_ilike, insert_ignore_conflicts

logger = logging.getLogger(__name__)


@dataclass
class BookmarkPage:
    """One page of a bookmark listing. `page` is 1-indexed."""

    items: list[Bookmark]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        """Number of pages needed to show `total` items at `limit` per page."""
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)


async def _load_bookmark(
    db: AsyncSession,
    bookmark_id: UUID,
    user_id: UUID | None = None,
    for_update: bool = False,
) -> Bookmark | None:
    """Load a bookmark with its tags, replacing any stale state in the session."""
    stmt = (
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(Bookmark.id == bookmark_id)
        .execution_options(populate_existing=True)
    )
    if user_id is not None:
        stmt = stmt.where(Bookmark.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update(of=Bookmark)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> Bookmark | None:
    """Get a bookmark by ID, scoped to user. Returns None if not found or wrong user."""
    return await _load_bookmark(db, bookmark_id, user_id)


async def _count_same_url(db: AsyncSession, user_id: UUID, normalized_url: str) -> int:
    result = await db.execute(
        select(func.count(Bookmark.id)).where(
            Bookmark.user_id == user_id,
            Bookmark.normalized_url == normalized_url,
        ),
    )
    return result.scalar() or 0


async def check_duplicate_url(
    db: AsyncSession,
    user_id: UUID,
    url: str,
) -> DuplicateCheckResponse:
    """
    Check whether the user already saved a URL equivalent to `url`.

    Raises:
        InvalidUrlError: If the URL can't be normalized.
    """
    normalized = normalize_url(url)
    result = await db.execute(
        select(Bookmark.id)
        .where(Bookmark.user_id == user_id, Bookmark.normalized_url == normalized)
        .order_by(Bookmark.created_at.asc()),
    )
    existing_ids = list(result.scalars())
    return DuplicateCheckResponse(
        normalized_url=normalized,
        is_duplicate=bool(existing_ids),
        existing_ids=existing_ids,
    )


async def _replace_tags(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    names: list[str],
) -> list[Tag]:
    tags = await resolve_or_create_tags(db, user_id, names)
    await db.execute(delete(bookmark_tags).where(bookmark_tags.c.bookmark_id == bookmark_id))
    if tags:
        await db.execute(
            insert_ignore_conflicts(db, bookmark_tags, ["bookmark_id", "tag_id"]).values(
                [{"bookmark_id": bookmark_id, "tag_id": tag.id} for tag in tags],
            ),
        )
    return tags


@translate_storage_errors
async def create_bookmark(
    db: AsyncSession,
    user_id: UUID,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Create a new bookmark for a user.

    The URL is normalized first, so an invalid URL fails before anything is written.
    A bookmark is flagged as a duplicate when the user already has a bookmark with
    the same normalized URL. The flag is not revisited later.

    Without an explicit collection the bookmark goes to the user's default collection.
    Without a title, one is derived from the URL.

    Raises:
        InvalidUrlError: If the URL is not a valid http/https URL.
        CollectionNotFoundError: If `collection_id` is not one of the user's collections.
    """
    normalized = normalize_url(data.url)
    domain = extract_domain(normalized)
    bookmark_type = detect_bookmark_type(normalized)

    if data.collection_id is not None:
        collection = await get_collection(db, user_id, data.collection_id, for_update=True)
        if collection is None:
            raise CollectionNotFoundError(data.collection_id)
    else:
        collection = await ensure_default(db, user_id)

    is_duplicate = await _count_same_url(db, user_id, normalized) > 0
    title = data.title or derive_title_from_url(normalized)
    title = title[:get_settings().max_title_length]

    async with db.begin_nested():
        max_order = (await db.execute(
            select(func.max(Bookmark.sort_order)).where(Bookmark.collection_id == collection.id),
        )).scalar()
        bookmark = Bookmark(
            user_id=user_id,
            collection_id=collection.id,
            url=data.url.strip(),
            normalized_url=normalized,
            title=title,
            excerpt=data.excerpt,
            cover_url=data.cover_url,
            note=data.note,
            domain=domain,
            type=bookmark_type,
            is_duplicate=is_duplicate,
            is_favorite=data.is_favorite,
            sort_order=(max_order if max_order is not None else -1) + 1,
            snapshot_path=data.snapshot_path,
        )
        db.add(bookmark)
        await db.flush()
        if data.tags:
            await _replace_tags(db, user_id, bookmark.id, data.tags)

    if is_duplicate:
        logger.debug("duplicate_bookmark user_id=%s normalized_url=%s", user_id, normalized)
    return await _load_bookmark(db, bookmark.id)


@translate_storage_errors
async def update_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    data: BookmarkUpdate,
) -> Bookmark:
    """
    Update a bookmark.

    Raises:
        NotFoundError: If the bookmark doesn't exist or isn't owned by the user.
        CollectionNotFoundError: If moving to a collection the user doesn't own.
    """
    bookmark = await _load_bookmark(db, bookmark_id, user_id, for_update=True)
    if bookmark is None:
        raise NotFoundError("Bookmark", bookmark_id)

    updates = data.model_dump(exclude_unset=True)
    new_tags = updates.pop("tags", None)

    collection_id = updates.pop("collection_id", None)
    if collection_id is not None and collection_id != bookmark.collection_id:
        if await get_collection(db, user_id, collection_id, for_update=True) is None:
            raise CollectionNotFoundError(collection_id)
        bookmark.collection_id = collection_id

    for field, value in updates.items():
        # title, sort order and flags are non-nullable; None means "leave as is"
        if value is None and field in ("title", "is_favorite", "is_broken", "sort_order"):
            continue
        setattr(bookmark, field, value)

    async with db.begin_nested():
        await db.flush()
        if new_tags is not None:
            await _replace_tags(db, user_id, bookmark.id, new_tags)

    return await _load_bookmark(db, bookmark.id)


@translate_storage_errors
async def set_bookmark_tags(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    tag_names: list[str],
) -> Bookmark:
    """
    Replace the full tag set of a bookmark, creating missing tags.

    Raises:
        NotFoundError: If the bookmark doesn't exist or isn't owned by the user.
    """
    bookmark = await _load_bookmark(db, bookmark_id, user_id, for_update=True)
    if bookmark is None:
        raise NotFoundError("Bookmark", bookmark_id)
    async with db.begin_nested():
        await _replace_tags(db, user_id, bookmark_id, tag_names)
        await db.execute(
            update(Bookmark)
            .where(Bookmark.id == bookmark_id)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False),
        )
    return await _load_bookmark(db, bookmark_id)


async def remove_bookmarks(db: AsyncSession, bookmark_ids: list[UUID]) -> int:
    """
    Delete bookmarks with their tag associations and highlights.

    Does not check ownership; callers pass ids they already filtered. Snapshot
    blobs are queued for deletion after commit.

    Returns:
        Number of bookmarks deleted.
    """
    if not bookmark_ids:
        return 0
    snapshot_paths = (await db.execute(
        select(Bookmark.snapshot_path).where(
            Bookmark.id.in_(bookmark_ids),
            Bookmark.snapshot_path.is_not(None),
        ),
    )).scalars().all()

    await db.execute(delete(Highlight).where(Highlight.bookmark_id.in_(bookmark_ids)))
    await db.execute(delete(bookmark_tags).where(bookmark_tags.c.bookmark_id.in_(bookmark_ids)))
    result = await db.execute(delete(Bookmark).where(Bookmark.id.in_(bookmark_ids)))

    for path in snapshot_paths:
        queue_blob_delete(db, path)
    return result.rowcount


@translate_storage_errors
async def delete_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> None:
    """
    Delete a bookmark, its tag associations and its highlights in one savepoint.

    Raises:
        NotFoundError: If the bookmark doesn't exist or isn't owned by the user.
    """
    result = await db.execute(
        select(Bookmark.id)
        .where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id)
        .with_for_update(),
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Bookmark", bookmark_id)

    async with db.begin_nested():
        await remove_bookmarks(db, [bookmark_id])


async def apply_sort_orders(db: AsyncSession, orders: dict[UUID, int]) -> int:
    """Write each bookmark's new sort order. Returns the number of bookmarks updated."""
    updated = 0
    for bookmark_id, sort_order in orders.items():
        result = await db.execute(
            update(Bookmark)
            .where(Bookmark.id == bookmark_id)
            .values(sort_order=sort_order),
        )
        updated += result.rowcount
    return updated


@translate_storage_errors
async def reorder_bookmarks(
    db: AsyncSession,
    user_id: UUID,
    orders: list[ReorderItem],
) -> int:
    """
    Set explicit sort orders on the user's bookmarks, all or nothing.

    Pairs naming bookmarks the user doesn't own are ignored.

    Raises:
        OrdersRequiredError: If no pairs are given.
        NoValidItemsError: If none of the pairs name a bookmark the user owns.
    """
    if not orders:
        raise OrdersRequiredError()
    owned = set((await db.execute(
        select(Bookmark.id).where(
            Bookmark.user_id == user_id,
            Bookmark.id.in_([item.id for item in orders]),
        ),
    )).scalars())
    if not owned:
        raise NoValidItemsError()

    async with db.begin_nested():
        return await apply_sort_orders(
            db, {item.id: item.sort_order for item in orders if item.id in owned},
        )


async def list_bookmarks(
    db: AsyncSession,
    user_id: UUID,
    filters: BookmarkFilters | None = None,
    page: int = 1,
    limit: int = 50,
) -> BookmarkPage:
    """
    List and filter the user's bookmarks with pagination.

    Every filter that is set must hold. The caller is responsible for capping `limit`.

    Args:
        db: Database session.
        user_id: User ID to scope bookmarks.
        filters: Optional filters and sort settings.
        page: 1-indexed page number.
        limit: Page size.

    Raises:
        ValueError: If page or limit is less than 1.
    """
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be at least 1")
    filters = filters or BookmarkFilters()

    base_query = (
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(Bookmark.user_id == user_id)
    )

    if filters.collection_id is not None:
        base_query = base_query.where(Bookmark.collection_id == filters.collection_id)
    if filters.type is not None:
        base_query = base_query.where(Bookmark.type == filters.type)
    if filters.domain:
        domain = filters.domain.strip().lower().removeprefix("www.")
        base_query = base_query.where(Bookmark.domain == domain)
    if filters.is_favorite is not None:
        base_query = base_query.where(Bookmark.is_favorite.is_(filters.is_favorite))
    if filters.is_broken is not None:
        base_query = base_query.where(Bookmark.is_broken.is_(filters.is_broken))
    if filters.is_duplicate is not None:
        base_query = base_query.where(Bookmark.is_duplicate.is_(filters.is_duplicate))
    if filters.date_from is not None:
        base_query = base_query.where(Bookmark.created_at >= filters.date_from)
    if filters.date_to is not None:
        base_query = base_query.where(Bookmark.created_at <= filters.date_to)

    # Apply text search filter
    if filters.search:
        search_pattern = f"%{escape_ilike(filters.search)}%"
        base_query = base_query.where(
            or_(
                Bookmark.title.ilike(search_pattern, escape="\\"),
                Bookmark.excerpt.ilike(search_pattern, escape="\\"),
            ),
        )

    # Must have ALL specified tags (via junction table)
    for tag_name in normalize_tag_names(filters.tags):
        subq = (
            select(bookmark_tags.c.bookmark_id)
            .join(Tag, bookmark_tags.c.tag_id == Tag.id)
            .where(
                bookmark_tags.c.bookmark_id == Bookmark.id,
                Tag.normalized_name == tag_name,
                Tag.user_id == user_id,
            )
        )
        base_query = base_query.where(exists(subq))

    # Get total count before pagination
    count_query = select(func.count()).select_from(base_query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    # Apply sorting with tiebreakers (created_at, then id for deterministic ordering)
    sort_columns = {
        "created_at": Bookmark.created_at,
        "updated_at": Bookmark.updated_at,
        "title": Bookmark.title,
        "sort_order": Bookmark.sort_order,
    }
    sort_column = sort_columns[filters.sort_by]
    if filters.sort_order == "desc":
        base_query = base_query.order_by(
            sort_column.desc(),
            Bookmark.created_at.desc(),
            Bookmark.id.desc(),
        )
    else:
        base_query = base_query.order_by(
            sort_column.asc(),
            Bookmark.created_at.asc(),
            Bookmark.id.asc(),
        )

    base_query = (
        base_query
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(base_query)
    return BookmarkPage(items=list(result.scalars().all()), total=total, page=page, limit=limit)


async def list_collection_bookmarks(
    db: AsyncSession,
    principal_id: UUID | None,
    collection_id: UUID,
) -> list[Bookmark]:
    """
    List every bookmark in a collection in manual sort order.

    Open to anyone who can view the collection: the owner, users it is shared
    with, and anyone at all when it is public.

    Raises:
        CollectionNotFoundError: If the collection doesn't exist or isn't visible.
    """
    if not await can_view_collection(db, collection_id, principal_id):
        raise CollectionNotFoundError(collection_id)
    result = await db.execute(
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(Bookmark.collection_id == collection_id)
        .order_by(Bookmark.sort_order.asc(), Bookmark.created_at.asc(), Bookmark.id.asc())
        .execution_options(populate_existing=True),
    )
    return list(result.scalars().all())

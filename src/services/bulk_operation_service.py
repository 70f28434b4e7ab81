"""
Bulk bookmark operations.

Each call applies one action to the caller's bookmarks among the requested ids,
inside a single savepoint. Ids that don't exist or belong to someone else are
dropped silently and never touched.
"""
import logging
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.tag import Tag, bookmark_tags
from schemas.bulk import BulkAction, BulkPayload, BulkRequest, BulkResult
from services.bookmark_service import apply_sort_orders, remove_bookmarks
from services.collection_service import get_collection
from services.exceptions import (
    CollectionNotFoundError,
    NoValidItemsError,
    OrdersRequiredError,
    TagsRequiredError,
    translate_storage_errors,
)
from services.tag_service import find_tags_by_ids, find_tags_by_names, resolve_or_create_tags
from services.utils import insert_ignore_conflicts

logger = logging.getLogger(__name__)


async def filter_owned_ids(
    db: AsyncSession,
    user_id: UUID,
    item_ids: list[UUID],
) -> list[UUID]:
    """Return the ids among `item_ids` that are bookmarks owned by the user."""
    if not item_ids:
        return []
    result = await db.execute(
        select(Bookmark.id)
        .where(Bookmark.user_id == user_id, Bookmark.id.in_(list(dict.fromkeys(item_ids))))
        .with_for_update(),
    )
    return list(result.scalars())


async def _resolve_tags(
    db: AsyncSession,
    user_id: UUID,
    action: BulkAction,
    payload: BulkPayload,
) -> list[Tag]:
    if payload.tags:
        if action == BulkAction.ADD_TAGS:
            tags = await resolve_or_create_tags(db, user_id, payload.tags)
        else:
            tags = await find_tags_by_names(db, user_id, payload.tags)
    else:
        tags = await find_tags_by_ids(db, user_id, payload.tag_ids)
    if not tags:
        raise TagsRequiredError(action)
    return tags


async def _add_tags(db: AsyncSession, item_ids: list[UUID], tags: list[Tag]) -> None:
    await db.execute(
        insert_ignore_conflicts(db, bookmark_tags, ["bookmark_id", "tag_id"]).values(
            [{"bookmark_id": item_id, "tag_id": tag.id} for item_id in item_ids for tag in tags],
        ),
    )


async def _remove_tags(db: AsyncSession, item_ids: list[UUID], tags: list[Tag]) -> None:
    await db.execute(
        delete(bookmark_tags).where(
            bookmark_tags.c.bookmark_id.in_(item_ids),
            bookmark_tags.c.tag_id.in_([tag.id for tag in tags]),
        ),
    )


async def _set_field(db: AsyncSession, item_ids: list[UUID], **values: object) -> None:
    await db.execute(
        update(Bookmark).where(Bookmark.id.in_(item_ids)).values(**values),
    )


@translate_storage_errors
async def execute_bulk_operation(
    db: AsyncSession,
    user_id: UUID,
    request: BulkRequest,
) -> BulkResult:
    """
    Apply one action to the user's bookmarks among `request.item_ids`.

    The affected count is the number of owned bookmarks the action was applied to.
    For reorder that is the owned bookmarks that appear in the orders list.

    Raises:
        NoValidItemsError: If none of the ids are bookmarks owned by the user.
        TagsRequiredError: If a tag action resolves to no tags.
        CollectionNotFoundError: If a move targets a collection the user doesn't own.
        OrdersRequiredError: If a reorder has no orders.
    """
    action = request.action
    payload = request.payload

    async with db.begin_nested():
        item_ids = await filter_owned_ids(db, user_id, request.item_ids)
        if not item_ids:
            raise NoValidItemsError()
        affected = len(item_ids)

        if action in (BulkAction.ADD_TAGS, BulkAction.REMOVE_TAGS):
            tags = await _resolve_tags(db, user_id, action, payload)
            if action == BulkAction.ADD_TAGS:
                await _add_tags(db, item_ids, tags)
            else:
                await _remove_tags(db, item_ids, tags)
        elif action == BulkAction.MOVE:
            if payload.collection_id is None:
                raise CollectionNotFoundError(None)
            if await get_collection(db, user_id, payload.collection_id, for_update=True) is None:
                raise CollectionNotFoundError(payload.collection_id)
            await _set_field(db, item_ids, collection_id=payload.collection_id)
        elif action == BulkAction.DELETE:
            await remove_bookmarks(db, item_ids)
        elif action == BulkAction.FAVORITE:
            await _set_field(db, item_ids, is_favorite=True)
        elif action == BulkAction.UNFAVORITE:
            await _set_field(db, item_ids, is_favorite=False)
        elif action == BulkAction.REORDER:
            if not payload.orders:
                raise OrdersRequiredError()
            owned = set(item_ids)
            orders = {item.id: item.sort_order for item in payload.orders if item.id in owned}
            await apply_sort_orders(db, orders)
            affected = len(orders)

    if action in (BulkAction.ADD_TAGS, BulkAction.REMOVE_TAGS):
        for obj in list(db.identity_map.values()):
            if isinstance(obj, Bookmark) and obj.id in item_ids:
                db.expire(obj, ["tag_objects"])

    logger.info(
        "bulk_operation user_id=%s action=%s requested=%d affected=%d",
        user_id, action, len(request.item_ids), affected,
    )
    return BulkResult(action=action, affected_count=affected)

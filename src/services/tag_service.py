"""Service layer for tag operations."""
import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.tag import Tag, bookmark_tags
from schemas.tag import TagCount, TagCreate, TagMergeResult, TagUpdate
from services.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    SameTagError,
    SourceNotFoundError,
    TargetNotFoundError,
    translate_storage_errors,
)
from services.tag_normalizer import normalize_tag_name, normalize_tag_names
from services.utils import escape_ilike, insert_ignore_conflicts

logger = logging.getLogger(__name__)


async def resolve_or_create_tag(
    db: AsyncSession,
    user_id: UUID,
    name: str,
) -> Tag:
    """
    Return the user's tag with this name, creating it if it doesn't exist.

    A single INSERT ... ON CONFLICT DO NOTHING keyed on (user_id, normalized_name)
    followed by a read, so concurrent creators of the same name end up with the
    same row instead of one of them failing.

    Raises:
        ValueError: If the name is blank.
    """
    display_name = name.strip()
    normalized = normalize_tag_name(display_name)
    if not normalized:
        raise ValueError("Tag name cannot be empty")

    stmt = insert_ignore_conflicts(db, Tag.__table__, ["user_id", "normalized_name"]).values(
        user_id=user_id,
        name=display_name,
        normalized_name=normalized,
    )
    await db.execute(stmt)

    result = await db.execute(
        select(Tag).where(Tag.user_id == user_id, Tag.normalized_name == normalized),
    )
    return result.scalar_one()


async def resolve_or_create_tags(
    db: AsyncSession,
    user_id: UUID,
    names: list[str],
) -> list[Tag]:
    """
    Resolve a list of tag names to tags, creating the missing ones.

    Names that normalize identically resolve to one tag; order follows the first
    occurrence of each name.
    """
    tags = []
    seen: set[str] = set()
    for name in names:
        normalized = normalize_tag_name(name)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        tags.append(await resolve_or_create_tag(db, user_id, name))
    return tags


async def find_tags_by_names(
    db: AsyncSession,
    user_id: UUID,
    names: list[str],
) -> list[Tag]:
    """Return the user's existing tags matching any of the names (case-insensitive)."""
    normalized = normalize_tag_names(names)
    if not normalized:
        return []
    result = await db.execute(
        select(Tag).where(Tag.user_id == user_id, Tag.normalized_name.in_(normalized)),
    )
    return list(result.scalars())


async def find_tags_by_ids(
    db: AsyncSession,
    user_id: UUID,
    tag_ids: list[UUID],
) -> list[Tag]:
    """Return the tags among `tag_ids` that the user owns."""
    if not tag_ids:
        return []
    result = await db.execute(
        select(Tag).where(Tag.user_id == user_id, Tag.id.in_(tag_ids)),
    )
    return list(result.scalars())


async def get_tag(db: AsyncSession, user_id: UUID, tag_id: UUID) -> Tag | None:
    """Get a tag by ID, scoped to its owner."""
    result = await db.execute(
        select(Tag).where(Tag.id == tag_id, Tag.user_id == user_id),
    )
    return result.scalar_one_or_none()


@translate_storage_errors
async def create_tag(db: AsyncSession, user_id: UUID, data: TagCreate) -> Tag:
    """
    Create a tag.

    Raises:
        AlreadyExistsError: If the user already has a tag with the same normalized name.
    """
    tag = Tag(
        user_id=user_id,
        name=data.name,
        normalized_name=normalize_tag_name(data.name),
        color=data.color,
    )
    try:
        async with db.begin_nested():
            db.add(tag)
            await db.flush()
    except IntegrityError as e:
        raise AlreadyExistsError("Tag", data.name) from e
    return tag


@translate_storage_errors
async def update_tag(
    db: AsyncSession,
    user_id: UUID,
    tag_id: UUID,
    data: TagUpdate,
) -> Tag:
    """
    Rename and/or recolor a tag.

    All bookmarks carrying the tag see the new name, since they reference it by id.

    Raises:
        NotFoundError: If the tag doesn't exist or isn't owned by the user.
        AlreadyExistsError: If another tag of the user already has the new name.
    """
    tag = await get_tag(db, user_id, tag_id)
    if tag is None:
        raise NotFoundError("Tag", tag_id)

    updates = data.model_dump(exclude_unset=True)
    if "name" in updates and updates["name"] is not None:
        new_normalized = normalize_tag_name(updates["name"])
        if new_normalized != tag.normalized_name:
            existing = await db.execute(
                select(Tag.id).where(
                    Tag.user_id == user_id,
                    Tag.normalized_name == new_normalized,
                ),
            )
            if existing.scalar_one_or_none() is not None:
                raise AlreadyExistsError("Tag", updates["name"])
        tag.name = updates["name"]
        tag.normalized_name = new_normalized
    if "color" in updates:
        tag.color = updates["color"]

    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError as e:
        # Lost a race with a concurrent create of the same name
        raise AlreadyExistsError("Tag", tag.name) from e
    await db.refresh(tag)
    return tag


@translate_storage_errors
async def delete_tag(db: AsyncSession, user_id: UUID, tag_id: UUID) -> None:
    """
    Delete a tag and its bookmark associations. Bookmarks are untouched.

    Raises:
        NotFoundError: If the tag doesn't exist or isn't owned by the user.
    """
    tag = await get_tag(db, user_id, tag_id)
    if tag is None:
        raise NotFoundError("Tag", tag_id)

    async with db.begin_nested():
        await db.execute(delete(bookmark_tags).where(bookmark_tags.c.tag_id == tag_id))
        await db.execute(delete(Tag).where(Tag.id == tag_id))
    db.expunge(tag)


async def list_tags_with_counts(
    db: AsyncSession,
    user_id: UUID,
    include_zero_count: bool = True,
) -> list[TagCount]:
    """
    Get all tags for a user with their bookmark counts.

    Returns:
        List of TagCount objects sorted by count desc, then name asc.
    """
    count = func.count(bookmark_tags.c.bookmark_id)
    stmt = (
        select(Tag.id, Tag.name, Tag.color, count.label("count"))
        .outerjoin(bookmark_tags, Tag.id == bookmark_tags.c.tag_id)
        .where(Tag.user_id == user_id)
        .group_by(Tag.id, Tag.name, Tag.color)
        .order_by(count.desc(), Tag.name.asc())
    )
    if not include_zero_count:
        stmt = stmt.having(count > 0)

    result = await db.execute(stmt)
    return [
        TagCount(id=row.id, name=row.name, color=row.color, count=row.count)
        for row in result
    ]


async def get_tag_suggestions(
    db: AsyncSession,
    user_id: UUID,
    prefix: str,
    limit: int = 10,
) -> list[str]:
    """
    Suggest existing tag names starting with `prefix`, most used first.

    Matching is on the normalized name, so it is case-insensitive.
    """
    normalized = normalize_tag_name(prefix)
    count = func.count(bookmark_tags.c.bookmark_id)
    stmt = (
        select(Tag.name)
        .outerjoin(bookmark_tags, Tag.id == bookmark_tags.c.tag_id)
        .where(Tag.user_id == user_id)
        .group_by(Tag.id, Tag.name)
        .order_by(count.desc(), Tag.name.asc())
        .limit(limit)
    )
    if normalized:
        stmt = stmt.where(
            Tag.normalized_name.like(f"{escape_ilike(normalized)}%", escape="\\"),
        )
    result = await db.execute(stmt)
    return list(result.scalars())


async def _tagged_bookmark_ids(db: AsyncSession, tag_id: UUID) -> set[UUID]:
    result = await db.execute(
        select(bookmark_tags.c.bookmark_id).where(bookmark_tags.c.tag_id == tag_id),
    )
    return set(result.scalars())


@translate_storage_errors
async def merge_tags(
    db: AsyncSession,
    user_id: UUID,
    source_tag_id: UUID,
    target_tag_id: UUID,
) -> TagMergeResult:
    """
    Fold the source tag into the target tag, then delete the source.

    Every bookmark that carried the source ends up carrying the target exactly once.
    Runs in one savepoint: either the whole merge is applied or none of it.

    Returns:
        TagMergeResult whose affected_bookmark_count is the number of distinct
        bookmarks now carrying the target (|source ∪ target|).

    Raises:
        SameTagError: If source and target are the same tag.
        SourceNotFoundError: If the source tag is missing or not owned by the user.
        TargetNotFoundError: If the target tag is missing or not owned by the user.
    """
    if source_tag_id == target_tag_id:
        raise SameTagError()

    async with db.begin_nested():
        source = (await db.execute(
            select(Tag.id)
            .where(Tag.id == source_tag_id, Tag.user_id == user_id)
            .with_for_update(),
        )).scalar_one_or_none()
        if source is None:
            raise SourceNotFoundError(source_tag_id)
        target = (await db.execute(
            select(Tag.id)
            .where(Tag.id == target_tag_id, Tag.user_id == user_id)
            .with_for_update(),
        )).scalar_one_or_none()
        if target is None:
            raise TargetNotFoundError(target_tag_id)

        source_ids = await _tagged_bookmark_ids(db, source_tag_id)
        target_ids = await _tagged_bookmark_ids(db, target_tag_id)

        to_add = source_ids - target_ids
        if to_add:
            await db.execute(
                insert_ignore_conflicts(db, bookmark_tags, ["bookmark_id", "tag_id"]).values(
                    [{"bookmark_id": bid, "tag_id": target_tag_id} for bid in to_add],
                ),
            )
        await db.execute(delete(bookmark_tags).where(bookmark_tags.c.tag_id == source_tag_id))
        await db.execute(delete(Tag).where(Tag.id == source_tag_id))

    # Drop the deleted tag and refresh anything holding the old associations
    for obj in list(db.identity_map.values()):
        if isinstance(obj, Tag) and obj.id == source_tag_id:
            db.expunge(obj)
        elif isinstance(obj, Bookmark) and obj.id in source_ids:
            db.expire(obj, ["tag_objects"])

    affected = len(source_ids | target_ids)
    logger.info(
        "tags_merged user_id=%s source=%s target=%s affected=%d",
        user_id, source_tag_id, target_tag_id, affected,
    )
    return TagMergeResult(target_tag_id=target_tag_id, affected_bookmark_count=affected)

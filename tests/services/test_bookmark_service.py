"""Tests for bookmark service layer functionality."""
from datetime import UTC, datetime
from uuid import UUID

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark, BookmarkType
from models.collection import Collection
from models.highlight import Highlight
from models.permission import PermissionRole
from models.tag import bookmark_tags
from models.user import User
from schemas.bookmark import BookmarkCreate, BookmarkFilters, BookmarkResponse, BookmarkUpdate
from schemas.bulk import ReorderItem
from schemas.collection import CollectionCreate
from services import bookmark_service
from services.blob_cleanup import pending_blob_deletes
from services.bookmark_service import (
    check_duplicate_url,
    create_bookmark,
    delete_bookmark,
    get_bookmark,
    list_bookmarks,
    list_collection_bookmarks,
    reorder_bookmarks,
    set_bookmark_tags,
    update_bookmark,
)
from services.collection_service import (
    create_collection,
    ensure_default,
    get_collection,
    make_public,
)
from services.exceptions import (
    CollectionNotFoundError,
    ErrorCode,
    InvalidUrlError,
    NoValidItemsError,
    NotFoundError,
    OrdersRequiredError,
)
from services.permission_service import share_collection


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(email="bookmarks@example.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create another test user for isolation tests."""
    user = User(email="other-bookmarks@example.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


async def _count_bookmarks(db: AsyncSession, user_id: UUID) -> int:
    return await db.scalar(select(func.count(Bookmark.id)).where(Bookmark.user_id == user_id))


# =============================================================================
# create_bookmark Tests
# =============================================================================


async def test__create_bookmark__normalizes_and_flags_duplicate(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that two URLs normalizing identically yield is_duplicate False then True."""
    first = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://EXAMPLE.com:443/a/b/?utm_source=x&z=1"),
    )
    second = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/a/b?z=1"),
    )

    assert first.normalized_url == "https://example.com/a/b?z=1"
    assert second.normalized_url == "https://example.com/a/b?z=1"
    assert first.url == "https://EXAMPLE.com:443/a/b/?utm_source=x&z=1"
    assert first.is_duplicate is False
    assert second.is_duplicate is True


async def test__create_bookmark__duplicate_is_per_user(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that another user's bookmark of the same URL is not a duplicate."""
    await create_bookmark(db_session, other_user.id, BookmarkCreate(url="https://example.com/x"))

    mine = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/x"))

    assert mine.is_duplicate is False


async def test__create_bookmark__duplicate_flag_not_recomputed(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that deleting the original leaves the later bookmark flagged."""
    first = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/x"))
    second = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/x/"))

    await delete_bookmark(db_session, test_user.id, first.id)

    reloaded = await get_bookmark(db_session, test_user.id, second.id)
    assert reloaded.is_duplicate is True


async def test__create_bookmark__defaults_to_unsorted_collection(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that a bookmark without a collection lands in the default collection."""
    bookmark = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/"))

    default = await ensure_default(db_session, test_user.id)
    assert bookmark.collection_id == default.id
    assert default.title == "Unsorted"


async def test__create_bookmark__explicit_owned_collection(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that an owned collection is honored."""
    collection = await create_collection(db_session, test_user.id, CollectionCreate(title="Reading"))

    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/", collection_id=collection.id),
    )

    assert bookmark.collection_id == collection.id


async def test__create_bookmark__locks_explicit_collection(
    db_session: AsyncSession,
    test_user: User,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test that the target collection is read with a row lock before writing into it."""
    collection = await create_collection(db_session, test_user.id, CollectionCreate(title="Reading"))
    calls: list[bool] = []

    async def recording_get_collection(db, user_id, collection_id, for_update=False):
        calls.append(for_update)
        return await get_collection(db, user_id, collection_id, for_update=for_update)

    monkeypatch.setattr(bookmark_service, "get_collection", recording_get_collection)

    await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/", collection_id=collection.id),
    )

    assert calls == [True]


async def test__create_bookmark__foreign_collection_raises(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that another user's collection is reported as CollectionNotFound."""
    theirs = await create_collection(db_session, other_user.id, CollectionCreate(title="Private"))

    with pytest.raises(CollectionNotFoundError) as exc_info:
        await create_bookmark(
            db_session, test_user.id,
            BookmarkCreate(url="https://example.com/", collection_id=theirs.id),
        )
    assert exc_info.value.code == ErrorCode.COLLECTION_NOT_FOUND
    assert await _count_bookmarks(db_session, test_user.id) == 0


async def test__create_bookmark__invalid_url_writes_nothing(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that an invalid URL fails before any row is written."""
    with pytest.raises(InvalidUrlError):
        await create_bookmark(
            db_session, test_user.id,
            BookmarkCreate(url="ftp://example.com/file", tags=["new-tag"]),
        )

    assert await _count_bookmarks(db_session, test_user.id) == 0
    collections = await db_session.scalar(
        select(func.count(Collection.id)).where(Collection.owner_id == test_user.id),
    )
    assert collections == 0


async def test__create_bookmark__derives_domain_type_and_title(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that domain, content type and fallback title are derived from the URL."""
    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://www.example.com/papers/deep-learning_survey.pdf"),
    )

    assert bookmark.domain == "example.com"
    assert bookmark.type == BookmarkType.DOCUMENT
    assert bookmark.title == "Deep learning survey.pdf"


async def test__create_bookmark__keeps_given_title(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that a supplied title wins over the derived one."""
    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://youtu.be/abc", title="A talk"),
    )

    assert bookmark.title == "A talk"
    assert bookmark.type == BookmarkType.VIDEO


async def test__create_bookmark__attaches_tags(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that tags are resolved or created and attached once each."""
    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/", tags=["Python", "web", "python "]),
    )

    assert sorted(t.normalized_name for t in bookmark.tag_objects) == ["python", "web"]
    response = BookmarkResponse.model_validate(bookmark)
    assert response.tags == ["Python", "web"]


async def test__create_bookmark__appends_to_collection_order(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that new bookmarks get increasing sort orders within a collection."""
    first = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/1"))
    second = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/2"))

    assert second.sort_order == first.sort_order + 1


# =============================================================================
# check_duplicate_url Tests
# =============================================================================


async def test__check_duplicate_url__finds_equivalent_url(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that an equivalent URL is reported with the existing ids."""
    existing = await create_bookmark(
        db_session, test_user.id, BookmarkCreate(url="https://example.com/a?b=1&a=2"),
    )

    result = await check_duplicate_url(db_session, test_user.id, "https://Example.com/a/?a=2&b=1#x")

    assert result.is_duplicate is True
    assert result.existing_ids == [existing.id]
    assert result.normalized_url == "https://example.com/a?a=2&b=1"


async def test__check_duplicate_url__unknown_url(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that an unseen URL is not a duplicate."""
    result = await check_duplicate_url(db_session, test_user.id, "https://example.com/new")

    assert result.is_duplicate is False
    assert result.existing_ids == []


# =============================================================================
# update_bookmark / set_bookmark_tags Tests
# =============================================================================


async def test__update_bookmark__updates_fields_and_replaces_tags(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that set fields are applied and tags replaced as a whole."""
    bookmark = await create_bookmark(
        db_session, test_user.id, BookmarkCreate(url="https://example.com/", tags=["old"]),
    )

    updated = await update_bookmark(
        db_session, test_user.id, bookmark.id,
        BookmarkUpdate(title="New", note="remember", is_favorite=True, tags=["fresh"]),
    )

    assert updated.title == "New"
    assert updated.note == "remember"
    assert updated.is_favorite is True
    assert [t.name for t in updated.tag_objects] == ["fresh"]


async def test__update_bookmark__move_to_foreign_collection_raises(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that moving into another user's collection fails and changes nothing."""
    bookmark = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/"))
    original_collection = bookmark.collection_id
    theirs = await create_collection(db_session, other_user.id, CollectionCreate(title="Theirs"))

    with pytest.raises(CollectionNotFoundError):
        await update_bookmark(
            db_session, test_user.id, bookmark.id, BookmarkUpdate(collection_id=theirs.id),
        )

    reloaded = await get_bookmark(db_session, test_user.id, bookmark.id)
    assert reloaded.collection_id == original_collection


async def test__update_bookmark__not_owned_is_not_found(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that updating another user's bookmark reports NotFound."""
    theirs = await create_bookmark(db_session, other_user.id, BookmarkCreate(url="https://example.com/"))

    with pytest.raises(NotFoundError):
        await update_bookmark(db_session, test_user.id, theirs.id, BookmarkUpdate(title="x"))


async def test__set_bookmark_tags__replaces_set(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that the tag set is replaced, including clearing it."""
    bookmark = await create_bookmark(
        db_session, test_user.id, BookmarkCreate(url="https://example.com/", tags=["a", "b"]),
    )

    updated = await set_bookmark_tags(db_session, test_user.id, bookmark.id, ["b", "C"])
    assert sorted(t.normalized_name for t in updated.tag_objects) == ["b", "c"]

    cleared = await set_bookmark_tags(db_session, test_user.id, bookmark.id, [])
    assert cleared.tag_objects == []


# =============================================================================
# delete_bookmark Tests
# =============================================================================


async def test__delete_bookmark__cascades_tags_and_highlights(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that tag associations and highlights go with the bookmark."""
    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/", tags=["python"], snapshot_path="snapshots/1.html"),
    )
    bookmark_id = bookmark.id
    db_session.add(Highlight(bookmark_id=bookmark_id, user_id=test_user.id, text="quote"))
    await db_session.flush()

    await delete_bookmark(db_session, test_user.id, bookmark_id)

    assert await get_bookmark(db_session, test_user.id, bookmark_id) is None
    tag_rows = await db_session.scalar(
        select(func.count()).select_from(bookmark_tags).where(
            bookmark_tags.c.bookmark_id == bookmark_id,
        ),
    )
    highlight_rows = await db_session.scalar(
        select(func.count(Highlight.id)).where(Highlight.bookmark_id == bookmark_id),
    )
    assert tag_rows == 0
    assert highlight_rows == 0
    assert pending_blob_deletes(db_session) == ["snapshots/1.html"]


async def test__delete_bookmark__rolled_back_keeps_snapshot(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that a delete undone by an enclosing savepoint doesn't queue the snapshot."""
    bookmark = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/kept", snapshot_path="snapshots/kept.html"),
    )
    bookmark_id = bookmark.id

    with pytest.raises(RuntimeError):
        async with db_session.begin_nested():
            await delete_bookmark(db_session, test_user.id, bookmark_id)
            raise RuntimeError("abandoned")

    assert await get_bookmark(db_session, test_user.id, bookmark_id) is not None
    assert pending_blob_deletes(db_session) == []


async def test__delete_bookmark__not_owned_is_not_found(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that another user's bookmark is reported as NotFound and survives."""
    theirs = await create_bookmark(db_session, other_user.id, BookmarkCreate(url="https://example.com/"))

    with pytest.raises(NotFoundError) as exc_info:
        await delete_bookmark(db_session, test_user.id, theirs.id)
    assert exc_info.value.code == ErrorCode.NOT_FOUND
    assert await get_bookmark(db_session, other_user.id, theirs.id) is not None


async def test__delete_bookmark__missing_is_not_found(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that a missing bookmark is reported as NotFound."""
    with pytest.raises(NotFoundError):
        await delete_bookmark(db_session, test_user.id, UUID(int=99))


# =============================================================================
# list_bookmarks Tests
# =============================================================================


@pytest.fixture
async def library(db_session: AsyncSession, test_user: User) -> dict[str, Bookmark]:
    """A small set of bookmarks with varied attributes."""
    created = {}
    specs = {
        "video": BookmarkCreate(url="https://www.youtube.com/watch?v=1", title="Python talk", tags=["python", "video"]),
        "article": BookmarkCreate(url="https://blog.example.com/post", title="Web 100% guide", excerpt="About HTML", tags=["web"]),
        "paper": BookmarkCreate(url="https://example.com/paper.pdf", title="Paper", tags=["python", "science"], is_favorite=True),
        "dup": BookmarkCreate(url="https://example.com/paper.pdf?utm_source=feed", title="Paper again"),
    }
    for key, data in specs.items():
        created[key] = await create_bookmark(db_session, test_user.id, data)
    return created


async def test__list_bookmarks__tags_require_all(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test that every listed tag must be present (case-insensitive)."""
    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(tags=["PYTHON"]))
    assert {b.id for b in page.items} == {library["video"].id, library["paper"].id}

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(tags=["python", "science"]))
    assert [b.id for b in page.items] == [library["paper"].id]


async def test__list_bookmarks__type_domain_and_flags(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test type, domain, favorite and duplicate filters."""
    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(type=BookmarkType.VIDEO))
    assert [b.id for b in page.items] == [library["video"].id]

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(domain="WWW.Example.com"))
    assert {b.id for b in page.items} == {library["paper"].id, library["dup"].id}

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(is_favorite=True))
    assert [b.id for b in page.items] == [library["paper"].id]

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(is_duplicate=True))
    assert [b.id for b in page.items] == [library["dup"].id]

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(is_broken=False))
    assert page.total == 4


async def test__list_bookmarks__filters_combine_with_and(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test that several filters must all hold."""
    filters = BookmarkFilters(tags=["python"], type=BookmarkType.DOCUMENT, is_favorite=True)
    page = await list_bookmarks(db_session, test_user.id, filters)
    assert [b.id for b in page.items] == [library["paper"].id]

    filters = BookmarkFilters(tags=["python"], is_favorite=True, type=BookmarkType.VIDEO)
    page = await list_bookmarks(db_session, test_user.id, filters)
    assert page.items == []
    assert page.total == 0


async def test__list_bookmarks__search_title_and_excerpt(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test case-insensitive substring search with literal wildcards."""
    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(search="html"))
    assert [b.id for b in page.items] == [library["article"].id]

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(search="100%"))
    assert [b.id for b in page.items] == [library["article"].id]

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(search="PAPER"))
    assert page.total == 2


async def test__list_bookmarks__date_range_inclusive(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test that date_from and date_to include their endpoints."""
    stamps = {
        "video": datetime(2024, 1, 1, tzinfo=UTC),
        "article": datetime(2024, 2, 1, tzinfo=UTC),
        "paper": datetime(2024, 3, 1, tzinfo=UTC),
        "dup": datetime(2024, 4, 1, tzinfo=UTC),
    }
    for key, stamp in stamps.items():
        await db_session.execute(
            update(Bookmark).where(Bookmark.id == library[key].id).values(created_at=stamp),
        )

    filters = BookmarkFilters(date_from=stamps["article"], date_to=stamps["paper"])
    page = await list_bookmarks(db_session, test_user.id, filters)

    assert {b.id for b in page.items} == {library["article"].id, library["paper"].id}


async def test__list_bookmarks__pagination_is_one_indexed(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test page/limit slicing and page metadata."""
    filters = BookmarkFilters(sort_by="title", sort_order="asc")

    first = await list_bookmarks(db_session, test_user.id, filters, page=1, limit=3)
    second = await list_bookmarks(db_session, test_user.id, filters, page=2, limit=3)

    assert [b.title for b in first.items] == ["Paper", "Paper again", "Python talk"]
    assert [b.title for b in second.items] == ["Web 100% guide"]
    assert first.total == 4
    assert first.total_pages == 2


async def test__list_bookmarks__rejects_page_zero(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that pages start at 1."""
    with pytest.raises(ValueError, match="page"):
        await list_bookmarks(db_session, test_user.id, page=0)


async def test__list_bookmarks__scoped_to_user(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test that other users' bookmarks never appear."""
    await create_bookmark(db_session, other_user.id, BookmarkCreate(url="https://example.com/theirs"))

    page = await list_bookmarks(db_session, test_user.id)
    assert page.total == len(library)


async def test__list_bookmarks__by_collection(
    db_session: AsyncSession,
    test_user: User,
    library: dict[str, Bookmark],
) -> None:
    """Test filtering by collection."""
    reading = await create_collection(db_session, test_user.id, CollectionCreate(title="Reading"))
    moved = await update_bookmark(
        db_session, test_user.id, library["article"].id, BookmarkUpdate(collection_id=reading.id),
    )

    page = await list_bookmarks(db_session, test_user.id, BookmarkFilters(collection_id=reading.id))

    assert [b.id for b in page.items] == [moved.id]


# =============================================================================
# reorder_bookmarks Tests
# =============================================================================


async def test__reorder_bookmarks__applies_owned_pairs_only(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that pairs for other users' bookmarks are ignored."""
    mine = await create_bookmark(db_session, test_user.id, BookmarkCreate(url="https://example.com/1"))
    theirs = await create_bookmark(db_session, other_user.id, BookmarkCreate(url="https://example.com/2"))
    their_order = theirs.sort_order

    count = await reorder_bookmarks(
        db_session, test_user.id,
        [ReorderItem(id=mine.id, sort_order=10), ReorderItem(id=theirs.id, sort_order=20)],
    )

    assert count == 1
    assert (await get_bookmark(db_session, test_user.id, mine.id)).sort_order == 10
    assert (await get_bookmark(db_session, other_user.id, theirs.id)).sort_order == their_order


async def test__reorder_bookmarks__requires_orders(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that an empty reorder fails with OrdersRequired."""
    with pytest.raises(OrdersRequiredError):
        await reorder_bookmarks(db_session, test_user.id, [])


async def test__reorder_bookmarks__no_owned_items(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    """Test that a reorder naming no owned bookmarks fails with NoValidItems."""
    with pytest.raises(NoValidItemsError):
        await reorder_bookmarks(db_session, test_user.id, [ReorderItem(id=UUID(int=5), sort_order=1)])


# =============================================================================
# list_collection_bookmarks Tests
# =============================================================================


async def test__list_collection_bookmarks__visibility(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """Test that owners, sharees and (for public collections) anyone can list."""
    collection = await create_collection(db_session, test_user.id, CollectionCreate(title="Links"))
    second = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/2", collection_id=collection.id),
    )
    first = await create_bookmark(
        db_session, test_user.id,
        BookmarkCreate(url="https://example.com/1", collection_id=collection.id),
    )
    await reorder_bookmarks(
        db_session, test_user.id,
        [ReorderItem(id=first.id, sort_order=0), ReorderItem(id=second.id, sort_order=1)],
    )

    owned = await list_collection_bookmarks(db_session, test_user.id, collection.id)
    assert [b.id for b in owned] == [first.id, second.id]

    with pytest.raises(CollectionNotFoundError):
        await list_collection_bookmarks(db_session, other_user.id, collection.id)
    with pytest.raises(CollectionNotFoundError):
        await list_collection_bookmarks(db_session, None, collection.id)

    await share_collection(db_session, test_user.id, collection.id, other_user.id, PermissionRole.VIEWER)
    assert len(await list_collection_bookmarks(db_session, other_user.id, collection.id)) == 2

    await make_public(db_session, test_user.id, collection.id)
    assert len(await list_collection_bookmarks(db_session, None, collection.id)) == 2

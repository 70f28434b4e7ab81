"""Tests for collection access rules and sharing."""
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from models.collection import Collection
from models.permission import PermissionRole
from models.user import User
from schemas.collection import CollectionCreate
from schemas.permission import ShareResponse
from services.collection_service import create_collection, make_private, make_public
from services.exceptions import (
    AlreadyExistsError,
    CannotShareWithSelfError,
    ErrorCode,
    NotFoundError,
)
from services.permission_service import (
    NO_ACCESS,
    AccessRole,
    can_edit_collection,
    can_view_collection,
    check_collection_access,
    derive_access,
    list_collection_shares,
    revoke_share,
    share_collection,
)

OWNER_ID = UUID(int=1)
STRANGER_ID = UUID(int=2)


def _collection(is_public: bool = False) -> Collection:
    return Collection(
        id=UUID(int=100),
        owner_id=OWNER_ID,
        title="Links",
        is_public=is_public,
        share_slug="abcdefgh" if is_public else None,
    )


# =============================================================================
# derive_access Tests (no database)
# =============================================================================


def test__derive_access__missing_collection() -> None:
    """Test that a missing collection grants nothing, even to a would-be owner."""
    assert derive_access(None, OWNER_ID) == NO_ACCESS


def test__derive_access__owner() -> None:
    """Test that the owner may view and edit."""
    access = derive_access(_collection(), OWNER_ID)

    assert access.has_access is True
    assert access.role == AccessRole.OWNER
    assert access.can_view is True
    assert access.can_edit is True


def test__derive_access__public_anonymous() -> None:
    """Test that anyone can view a public collection but not edit it."""
    access = derive_access(_collection(is_public=True), None)

    assert access.can_view is True
    assert access.can_edit is False
    assert access.role == AccessRole.VIEWER


def test__derive_access__public_wins_over_editor_share() -> None:
    """Test that the public rule applies before a share is consulted."""
    access = derive_access(_collection(is_public=True), STRANGER_ID, PermissionRole.EDITOR)

    assert access.can_view is True
    assert access.can_edit is False


def test__derive_access__anonymous_private() -> None:
    """Test that an anonymous principal can't see a private collection."""
    assert derive_access(_collection(), None) == NO_ACCESS


@pytest.mark.parametrize(
    ("role", "can_edit"),
    [
        (PermissionRole.VIEWER, False),
        (PermissionRole.EDITOR, True),
    ],
)
def test__derive_access__shared(role: PermissionRole, can_edit: bool) -> None:
    """Test that sharees can view, and only editors can edit."""
    access = derive_access(_collection(), STRANGER_ID, role)

    assert access.has_access is True
    assert access.role == AccessRole(role.value)
    assert access.can_view is True
    assert access.can_edit is can_edit


def test__derive_access__stranger() -> None:
    """Test that an unrelated user has no access to a private collection."""
    assert derive_access(_collection(), STRANGER_ID) == NO_ACCESS


def test__derive_access__owner_of_public_can_edit() -> None:
    """Test that publishing doesn't reduce the owner's rights."""
    access = derive_access(_collection(is_public=True), OWNER_ID)

    assert access.role == AccessRole.OWNER
    assert access.can_edit is True


# =============================================================================
# Database-backed access checks
# =============================================================================


@pytest.fixture
async def owner(db_session: AsyncSession) -> User:
    """Create the collection owner."""
    user = User(email="owner@example.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def friend(db_session: AsyncSession) -> User:
    """Create a user to share with."""
    user = User(email="friend@example.com")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def collection(db_session: AsyncSession, owner: User) -> Collection:
    """Create a private collection owned by `owner`."""
    return await create_collection(db_session, owner.id, CollectionCreate(title="Reading"))


async def test__check_collection_access__missing(db_session: AsyncSession, owner: User) -> None:
    """Test that an unknown collection id grants nothing."""
    assert await check_collection_access(db_session, UUID(int=404), owner.id) == NO_ACCESS


async def test__share_collection__viewer_then_revoke(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test viewer access appears on share and disappears on revoke."""
    assert await can_view_collection(db_session, collection.id, friend.id) is False

    await share_collection(db_session, owner.id, collection.id, friend.id, PermissionRole.VIEWER)
    assert await can_view_collection(db_session, collection.id, friend.id) is True
    assert await can_edit_collection(db_session, collection.id, friend.id) is False

    await revoke_share(db_session, owner.id, collection.id, friend.id)
    assert await can_view_collection(db_session, collection.id, friend.id) is False
    assert await can_edit_collection(db_session, collection.id, friend.id) is False


async def test__share_collection__editor(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that an editor share grants edit."""
    await share_collection(db_session, owner.id, collection.id, friend.id, PermissionRole.EDITOR)

    access = await check_collection_access(db_session, collection.id, friend.id)

    assert access.role == AccessRole.EDITOR
    assert access.can_edit is True


async def test__share_collection__role_change(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that sharing again with another role updates the existing share."""
    first = await share_collection(db_session, owner.id, collection.id, friend.id, PermissionRole.VIEWER)
    second = await share_collection(db_session, owner.id, collection.id, friend.id, PermissionRole.EDITOR)

    assert first.id == second.id
    assert await can_edit_collection(db_session, collection.id, friend.id) is True
    shares = await list_collection_shares(db_session, owner.id, collection.id)
    assert [ShareResponse.model_validate(s).role for s in shares] == [PermissionRole.EDITOR]


async def test__share_collection__same_role_twice(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that repeating an identical share reports AlreadyExists."""
    await share_collection(db_session, owner.id, collection.id, friend.id)

    with pytest.raises(AlreadyExistsError):
        await share_collection(db_session, owner.id, collection.id, friend.id)


async def test__share_collection__with_self(
    db_session: AsyncSession,
    owner: User,
    collection: Collection,
) -> None:
    """Test that the owner can't share with themselves."""
    with pytest.raises(CannotShareWithSelfError) as exc_info:
        await share_collection(db_session, owner.id, collection.id, owner.id)
    assert exc_info.value.code == ErrorCode.CANNOT_SHARE_WITH_SELF


async def test__share_collection__unknown_user(
    db_session: AsyncSession,
    owner: User,
    collection: Collection,
) -> None:
    """Test that sharing with a user that doesn't exist reports NotFound."""
    with pytest.raises(NotFoundError):
        await share_collection(db_session, owner.id, collection.id, UUID(int=404))


async def test__share_collection__not_owner(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that even an editor can't re-share someone else's collection."""
    await share_collection(db_session, owner.id, collection.id, friend.id, PermissionRole.EDITOR)

    with pytest.raises(NotFoundError):
        await share_collection(db_session, friend.id, collection.id, owner.id)


async def test__revoke_share__missing(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that revoking a share that doesn't exist reports NotFound."""
    with pytest.raises(NotFoundError):
        await revoke_share(db_session, owner.id, collection.id, friend.id)


async def test__list_collection_shares__not_owner(
    db_session: AsyncSession,
    friend: User,
    collection: Collection,
) -> None:
    """Test that only the owner can list shares."""
    with pytest.raises(NotFoundError):
        await list_collection_shares(db_session, friend.id, collection.id)


async def test__public_collection__anonymous_access(
    db_session: AsyncSession,
    owner: User,
    friend: User,
    collection: Collection,
) -> None:
    """Test that publishing opens view access to everyone, and unpublishing closes it."""
    await make_public(db_session, owner.id, collection.id)

    assert await can_view_collection(db_session, collection.id, None) is True
    assert await can_view_collection(db_session, collection.id, friend.id) is True
    assert await can_edit_collection(db_session, collection.id, None) is False
    assert await can_edit_collection(db_session, collection.id, owner.id) is True

    await make_private(db_session, owner.id, collection.id)

    assert await can_view_collection(db_session, collection.id, None) is False
    assert await can_view_collection(db_session, collection.id, friend.id) is False

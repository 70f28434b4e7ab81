"""
Access derivation and sharing for collections.

Access is computed from current rows on every check; nothing is cached, so a
revoked share stops granting access immediately.
"""
import logging
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.collection import Collection
from models.permission import CollectionPermission, PermissionRole
from models.user import User
from services.exceptions import (
    AlreadyExistsError,
    CannotShareWithSelfError,
    NotFoundError,
    translate_storage_errors,
)

logger = logging.getLogger(__name__)


class AccessRole(StrEnum):
    """Effective role of a principal on a collection."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


@dataclass(frozen=True)
class AccessCheck:
    """Result of an access check. `role` is None when there is no access."""

    has_access: bool
    role: AccessRole | None
    can_view: bool
    can_edit: bool


NO_ACCESS = AccessCheck(has_access=False, role=None, can_view=False, can_edit=False)


def derive_access(
    collection: Collection | None,
    principal_id: UUID | None,
    granted_role: PermissionRole | None = None,
) -> AccessCheck:
    """
    Apply the access rules to already-loaded state. First matching rule wins.

    Args:
        collection: The collection, or None if it doesn't exist.
        principal_id: The requesting user, or None for an anonymous principal.
        granted_role: The principal's share role on the collection, if any.

    Rules:
        1. missing collection: no access
        2. owner: full access
        3. public collection: anyone (including anonymous) may view, nobody else may edit
        4. anonymous: no access
        5. shared: view always, edit only for editors
        6. otherwise: no access
    """
    if collection is None:
        return NO_ACCESS
    if principal_id is not None and principal_id == collection.owner_id:
        return AccessCheck(has_access=True, role=AccessRole.OWNER, can_view=True, can_edit=True)
    if collection.is_public:
        return AccessCheck(
            has_access=True,
            role=AccessRole.VIEWER,
            can_view=True,
            can_edit=False,
        )
    if principal_id is None:
        return NO_ACCESS
    if granted_role is not None:
        return AccessCheck(
            has_access=True,
            role=AccessRole(granted_role.value),
            can_view=True,
            can_edit=granted_role == PermissionRole.EDITOR,
        )
    return NO_ACCESS


async def _get_share(
    db: AsyncSession,
    collection_id: UUID,
    user_id: UUID,
) -> CollectionPermission | None:
    result = await db.execute(
        select(CollectionPermission).where(
            CollectionPermission.collection_id == collection_id,
            CollectionPermission.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def check_collection_access(
    db: AsyncSession,
    collection_id: UUID,
    principal_id: UUID | None,
) -> AccessCheck:
    """Compute the principal's access to a collection from current state."""
    collection = (await db.execute(
        select(Collection).where(Collection.id == collection_id),
    )).scalar_one_or_none()
    if collection is None:
        return NO_ACCESS

    granted_role = None
    if principal_id is not None and principal_id != collection.owner_id and not collection.is_public:
        share = await _get_share(db, collection_id, principal_id)
        if share is not None:
            granted_role = share.role
    return derive_access(collection, principal_id, granted_role)


async def can_view_collection(
    db: AsyncSession,
    collection_id: UUID,
    principal_id: UUID | None,
) -> bool:
    """Whether the principal may read the collection."""
    return (await check_collection_access(db, collection_id, principal_id)).can_view


async def can_edit_collection(
    db: AsyncSession,
    collection_id: UUID,
    principal_id: UUID | None,
) -> bool:
    """Whether the principal may modify the collection."""
    return (await check_collection_access(db, collection_id, principal_id)).can_edit


async def _get_owned_collection(
    db: AsyncSession,
    owner_id: UUID,
    collection_id: UUID,
) -> Collection:
    result = await db.execute(
        select(Collection)
        .where(Collection.id == collection_id, Collection.owner_id == owner_id)
        .with_for_update(),
    )
    collection = result.scalar_one_or_none()
    if collection is None:
        raise NotFoundError("Collection", collection_id)
    return collection


@translate_storage_errors
async def share_collection(
    db: AsyncSession,
    owner_id: UUID,
    collection_id: UUID,
    user_id: UUID,
    role: PermissionRole = PermissionRole.VIEWER,
) -> CollectionPermission:
    """
    Grant a user a role on one of the owner's collections.

    Sharing again with a different role changes the role.

    Raises:
        NotFoundError: If the collection isn't owned by the caller or the user doesn't exist.
        CannotShareWithSelfError: If the owner shares with themselves.
        AlreadyExistsError: If the user already has exactly this role.
    """
    await _get_owned_collection(db, owner_id, collection_id)
    if user_id == owner_id:
        raise CannotShareWithSelfError()

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    share = await _get_share(db, collection_id, user_id)
    if share is not None:
        if share.role == role:
            raise AlreadyExistsError("Share", user_id)
        share.role = role
        await db.flush()
        logger.info(
            "collection_share_updated collection_id=%s user_id=%s role=%s",
            collection_id, user_id, role,
        )
        return share

    share = CollectionPermission(collection_id=collection_id, user_id=user_id, role=role)
    db.add(share)
    await db.flush()
    await db.refresh(share)
    logger.info(
        "collection_shared collection_id=%s user_id=%s role=%s", collection_id, user_id, role,
    )
    return share


@translate_storage_errors
async def revoke_share(
    db: AsyncSession,
    owner_id: UUID,
    collection_id: UUID,
    user_id: UUID,
) -> None:
    """
    Remove a user's share on one of the owner's collections.

    Raises:
        NotFoundError: If the collection isn't owned by the caller or no share exists.
    """
    await _get_owned_collection(db, owner_id, collection_id)
    share = await _get_share(db, collection_id, user_id)
    if share is None:
        raise NotFoundError("Share", user_id)

    await db.execute(
        delete(CollectionPermission).where(CollectionPermission.id == share.id),
    )
    db.expunge(share)
    logger.info("collection_share_revoked collection_id=%s user_id=%s", collection_id, user_id)


async def list_collection_shares(
    db: AsyncSession,
    owner_id: UUID,
    collection_id: UUID,
) -> list[CollectionPermission]:
    """
    List the shares of one of the owner's collections, oldest first.

    Raises:
        NotFoundError: If the collection isn't owned by the caller.
    """
    result = await db.execute(
        select(Collection.id).where(
            Collection.id == collection_id,
            Collection.owner_id == owner_id,
        ),
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("Collection", collection_id)

    shares = await db.execute(
        select(CollectionPermission)
        .where(CollectionPermission.collection_id == collection_id)
        .order_by(CollectionPermission.created_at.asc()),
    )
    return list(shares.scalars())

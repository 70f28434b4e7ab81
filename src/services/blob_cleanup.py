"""
Deferred deletion of archived page snapshots.

Snapshot blobs live outside the database, so they cannot be removed inside the
transaction that deletes their bookmark. Services queue the paths on the session
instead; the queue is drained only after a successful commit and discarded on
rollback. Rolling back a savepoint drops only the paths queued inside it. Blob
deletion is best effort: a failure is logged, never raised.
"""
import logging
from typing import Protocol

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_blob_deletes"
MARKS_KEY = "pending_blob_delete_marks"


class BlobStore(Protocol):
    """Anything that can delete a stored blob by path."""

    async def delete(self, path: str) -> None:
        """Delete the blob at `path`."""
        ...


# Global blob store state using a container to avoid global statement
class _BlobStoreState:
    """Container for global blob store state."""

    store: BlobStore | None = None


_state = _BlobStoreState()


def get_blob_store() -> BlobStore | None:
    """Get the global blob store instance."""
    return _state.store


def set_blob_store(store: BlobStore | None) -> None:
    """Set the global blob store instance."""
    _state.store = store


@event.listens_for(Session, "after_transaction_create")
def _mark_savepoint(session: Session, transaction: SessionTransaction) -> None:
    if transaction.nested:
        marks = session.info.setdefault(MARKS_KEY, {})
        marks[transaction] = len(session.info.get(PENDING_KEY, []))


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back(session: Session, previous_transaction: SessionTransaction) -> None:
    marks = session.info.get(MARKS_KEY, {})
    if previous_transaction.parent is None:
        session.info.pop(PENDING_KEY, None)
        marks.clear()
        return
    mark = marks.pop(previous_transaction, None)
    if mark is not None and PENDING_KEY in session.info:
        del session.info[PENDING_KEY][mark:]


@event.listens_for(Session, "after_transaction_end")
def _forget_marks(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        session.info.pop(MARKS_KEY, None)


def queue_blob_delete(db: AsyncSession, path: str | None) -> None:
    """Schedule a blob for deletion once the session commits."""
    if path:
        db.info.setdefault(PENDING_KEY, []).append(path)


def pending_blob_deletes(db: AsyncSession) -> list[str]:
    """Paths queued on this session and not yet processed."""
    return list(db.info.get(PENDING_KEY, []))


def discard_pending_blob_deletes(db: AsyncSession) -> None:
    """Forget queued paths (the transaction that queued them rolled back)."""
    db.info.pop(PENDING_KEY, None)


async def run_pending_blob_deletes(db: AsyncSession) -> int:
    """
    Delete every queued blob and clear the queue.

    Returns:
        Number of blobs deleted successfully.
    """
    paths = db.info.pop(PENDING_KEY, [])
    store = get_blob_store()
    if not paths:
        return 0
    if store is None:
        logger.debug("blob_cleanup_skipped reason=no_store count=%d", len(paths))
        return 0

    deleted = 0
    for path in paths:
        try:
            await store.delete(path)
            deleted += 1
        except Exception as e:
            logger.warning("blob_delete_failed path=%s error=%s", path, e)
    return deleted

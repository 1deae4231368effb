"""Per-owner mutual exclusion for feature tree mutations.

Every mutation of an owner's tree locks that owner's ``feature_tree_locks``
row first, so create/toggle/rename/delete on one tree run one at a time while
trees of different owners never contend. The lock is held until the
surrounding transaction commits or rolls back.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("tasktree-core.locking")


def acquire_tree_lock(db: Session, owner_id: str) -> models.FeatureTreeLock:
    """
    Lock the owner's tree row for the rest of the transaction.

    The row is created on first use inside a SAVEPOINT; losing the insert race
    to another transaction falls back to locking the row it created.

    Args:
        db: Database session (transaction in progress)
        owner_id: Owner whose tree is about to change

    Returns:
        The locked row, with ``version`` already incremented
    """
    lock = _select_for_update(db, owner_id)
    if lock is None:
        try:
            with db.begin_nested():
                lock = models.FeatureTreeLock(owner_id=owner_id, version=0)
                db.add(lock)
                db.flush()
        except IntegrityError:
            logger.debug(f"Tree lock row for owner {owner_id} created concurrently; locking existing row")
            lock = _select_for_update(db, owner_id)

    lock.version = (lock.version or 0) + 1
    lock.updated_at = models.utcnow()
    db.flush()
    logger.debug(f"Acquired tree lock for owner {owner_id} (version {lock.version})")
    return lock


def current_tree_version(db: Session, owner_id: str) -> int:
    """Number of committed mutations of the owner's tree (0 if never mutated)."""
    lock = db.get(models.FeatureTreeLock, owner_id)
    return lock.version if lock else 0


def _select_for_update(db: Session, owner_id: str):
    return (
        db.query(models.FeatureTreeLock)
        .filter(models.FeatureTreeLock.owner_id == owner_id)
        .with_for_update()
        .populate_existing()
        .first()
    )

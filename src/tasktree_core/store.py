"""Owner-scoped queries over feature nodes.

Every query here filters on ``owner_id``; nothing in the core reads or writes
another owner's nodes.
"""
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import models


def get_feature(db: Session, owner_id: str, fid: str) -> Optional[models.Feature]:
    """
    Get a feature by its public id.

    Args:
        db: Database session
        owner_id: Owner scope
        fid: Public feature id

    Returns:
        Feature if found, None otherwise
    """
    if not fid:
        return None
    return (
        db.query(models.Feature)
        .filter(models.Feature.owner_id == owner_id, models.Feature.fid == fid)
        .first()
    )


def get_features_by_ids(db: Session, owner_id: str, ids: Iterable[int]) -> list[models.Feature]:
    """Load features by storage id, returned in the order of ``ids``."""
    ids = list(ids)
    if not ids:
        return []
    rows = (
        db.query(models.Feature)
        .filter(models.Feature.owner_id == owner_id, models.Feature.id.in_(ids))
        .all()
    )
    by_id = {row.id: row for row in rows}
    return [by_id[i] for i in ids if i in by_id]


def get_all_features(db: Session, owner_id: str) -> list[models.Feature]:
    return (
        db.query(models.Feature)
        .filter(models.Feature.owner_id == owner_id)
        .order_by(models.Feature.id)
        .all()
    )


def get_root_features(db: Session, owner_id: str) -> list[models.Feature]:
    return (
        db.query(models.Feature)
        .filter(models.Feature.owner_id == owner_id, models.Feature.parent_fid.is_(None))
        .order_by(models.Feature.id)
        .all()
    )


def find_name_clash(
    db: Session,
    owner_id: str,
    name: str,
    exclude_fid: Optional[str] = None,
) -> Optional[models.Feature]:
    """
    Find another feature of the owner whose name equals ``name`` ignoring case.

    Args:
        db: Database session
        owner_id: Owner scope
        name: Candidate name
        exclude_fid: Feature to ignore (the one being renamed)

    Returns:
        The clashing feature, or None if the name is free
    """
    query = db.query(models.Feature).filter(
        models.Feature.owner_id == owner_id,
        models.Feature.name_key == models.name_key(name),
    )
    if exclude_fid:
        query = query.filter(models.Feature.fid != exclude_fid)
    return query.first()


def delete_features(db: Session, features: list[models.Feature]) -> None:
    for feature in features:
        db.delete(feature)
    db.flush()

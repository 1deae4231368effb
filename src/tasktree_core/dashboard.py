"""Per-owner dashboard counters maintained alongside tree mutations."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("tasktree-core.dashboard")

TOTAL_FEATURES = "totalFeatures"
TOTAL_FEATURES_TITLE = "Total Features"


def adjust_metric(
    db: Session,
    owner_id: str,
    key: str,
    title: str,
    delta: int,
) -> models.DashboardMetric:
    """
    Add ``delta`` to the owner's counter, creating it on first use.

    Runs in the caller's transaction. The value never drops below zero.

    Args:
        db: Database session
        owner_id: Owner scope
        key: Metric key (e.g. totalFeatures)
        title: Display title, stored when the metric is created
        delta: Signed increment

    Returns:
        The updated metric
    """
    metric = get_metric(db, owner_id, key)
    now = models.utcnow()
    if metric is None:
        metric = models.DashboardMetric(
            owner_id=owner_id,
            key=key,
            title=title,
            value=0,
            created_at=now,
        )
        db.add(metric)

    metric.value = max(0, (metric.value or 0) + delta)
    metric.updated_at = now
    db.flush()
    logger.debug(f"Metric {key} for owner {owner_id} adjusted by {delta} to {metric.value}")
    return metric


def get_metric(db: Session, owner_id: str, key: str) -> Optional[models.DashboardMetric]:
    return (
        db.query(models.DashboardMetric)
        .filter(models.DashboardMetric.owner_id == owner_id, models.DashboardMetric.key == key)
        .first()
    )


def get_dashboard(db: Session, owner_id: str, keys: Optional[list[str]] = None) -> list[models.DashboardMetric]:
    """Metrics of the owner, optionally restricted to ``keys``, ordered by key."""
    query = db.query(models.DashboardMetric).filter(models.DashboardMetric.owner_id == owner_id)
    if keys:
        query = query.filter(models.DashboardMetric.key.in_(keys))
    return query.order_by(models.DashboardMetric.key).all()

"""Projection of entities into ordered key/value snapshots for the audit trail.

Resource services (features here, tasks and statuses elsewhere) call
``project_snapshot`` before and after a mutation and hand both snapshots to
``audit_trail.record_activity`` within the same transaction.
"""
import enum
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Sequence

from . import models
from .schemas import ActorSnapshot, SnapshotField

FEATURE_SNAPSHOT_FIELDS: tuple[str, ...] = (
    "fid",
    "name",
    "parent_fid",
    "is_active",
    "created_at",
    "updated_at",
    "modified_by",
)


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    return value


def project_snapshot(source: Any, fields: Sequence[str]) -> list[SnapshotField]:
    """
    Project ``source`` into an ordered list of (key, value) pairs.

    Args:
        source: Mapping or object with attributes
        fields: Keys to capture, in output order

    Returns:
        One SnapshotField per key; missing keys are captured as None
    """
    if isinstance(source, Mapping):
        return [SnapshotField(key=f, value=_plain(source.get(f))) for f in fields]
    return [SnapshotField(key=f, value=_plain(getattr(source, f, None))) for f in fields]


def feature_snapshot(feature: models.Feature) -> list[SnapshotField]:
    return project_snapshot(feature, FEATURE_SNAPSHOT_FIELDS)


def snapshot_diff(new: list[SnapshotField], old: list[SnapshotField]) -> dict[str, tuple[Any, Any]]:
    """Keys whose values differ, mapped to (old, new)."""
    old_values = {f.key: f.value for f in old}
    return {
        f.key: (old_values.get(f.key), f.value)
        for f in new
        if old_values.get(f.key) != f.value
    }


def system_actor(owner_id: str) -> ActorSnapshot:
    """Actor used when a mutation arrives without an explicit actor."""
    return ActorSnapshot(id=owner_id)

"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    Boolean,
    UniqueConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_fid() -> str:
    return str(uuid4())


def name_key(name: str) -> str:
    """Case-insensitive comparison key for feature names."""
    return name.casefold()


def _default_name_key(context) -> str:
    return name_key(context.get_current_parameters()["name"])


class AuditTopic(str, enum.Enum):
    """Mutation kind recorded on an activity log entry."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class EntityType(str, enum.Enum):
    """Well-known audited resource types.

    ``ActivityLog.entity_type`` is a plain string column so other resource
    services can audit types not listed here.
    """

    FEATURE = "Feature"
    TASK = "Task"
    STATUS = "Status"


class Feature(Base):
    """
    Feature node in a per-owner hierarchy.

    The hierarchy is stored as a ``parent_fid`` pointer plus two denormalized
    caches of storage ids, maintained by ``ancestry`` on create/delete:
    - child_ids: immediate children, in insertion order
    - all_child_ids: every transitive descendant

    ``fid`` is the public identifier; ``id`` never leaves the core except
    through the caches. ``name_key`` is the casefolded name, unique per owner;
    it must be reassigned whenever ``name`` changes.
    """

    __tablename__ = "features"

    # Identity
    id = Column(Integer, primary_key=True, autoincrement=True)
    fid = Column(String(36), nullable=False, default=new_fid)
    owner_id = Column(String(64), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    name_key = Column(String(200), nullable=False, default=_default_name_key)
    is_active = Column(Boolean, nullable=False, default=False)

    # Hierarchy
    parent_fid = Column(String(36), nullable=True, index=True)
    child_ids = Column(JSON, nullable=False, default=list)
    all_child_ids = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    modified_by = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("owner_id", "fid", name="uq_features_owner_fid"),
        # Checked in code before insert; catches concurrent duplicates
        UniqueConstraint("owner_id", "name_key", name="uq_features_owner_name_key"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_fid is None

    @property
    def is_able_to_expand(self) -> bool:
        """Whether the node has at least one direct child."""
        return len(self.child_ids or []) > 0

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<Feature {self.fid} {self.name!r} ({state})>"


class ActivityLog(Base):
    """Immutable audit entry for any resource mutation.

    Entries for the same (owner_id, subject_id) form a doubly linked chain
    through prev_link/next_link deep links. next_link is the only column ever
    written after insert, exactly once, when the successor is recorded.
    """

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    subject_id = Column(String(64), nullable=False)
    entity_type = Column(String(50), nullable=False, index=True)
    topic = Column(Enum(AuditTopic, values_callable=lambda x: [e.value for e in x]), nullable=False)
    message = Column(Text, nullable=False)

    # [[{"key": ..., "value": ...}, ...], ...] - Update stores [new, old]
    payloads = Column(JSON, nullable=False, default=list)

    # Opaque UI routing hints
    route_to_view = Column(String(255), nullable=False, default="")
    navigation_workflow = Column(JSON, nullable=False, default=list)

    # Chain
    prev_link = Column(String(255), nullable=False, default="")
    next_link = Column(String(255), nullable=False, default="")

    # Actor snapshots: {"id": ..., "name": ..., "email": ...}
    modified_before_by = Column(JSON, nullable=False, default=dict)
    modified_after_by = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("ix_activity_logs_owner_subject_created", "owner_id", "subject_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.entity_type}:{self.subject_id} {self.topic.value} at {self.created_at}>"


class ActivityLogTimeline(Base):
    """Append-only per-subject feed of lightweight audit summaries."""

    __tablename__ = "activity_log_timelines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False)
    subject_id = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship(
        "ActivityLogTimelineItem",
        back_populates="timeline",
        order_by="ActivityLogTimelineItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "subject_id", name="uq_activity_log_timelines_owner_subject"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLogTimeline {self.subject_id} ({len(self.items)} items)>"


class ActivityLogTimelineItem(Base):
    __tablename__ = "activity_log_timeline_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timeline_id = Column(
        Integer,
        ForeignKey("activity_log_timelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_log_id = Column(Integer, ForeignKey("activity_logs.id"), nullable=False)
    position = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)

    timeline = relationship("ActivityLogTimeline", back_populates="items")

    __table_args__ = (
        UniqueConstraint("timeline_id", "position", name="uq_activity_log_timeline_items_position"),
    )


class FeatureTreeLock(Base):
    """One row per owner; row-locked by every mutation of that owner's tree."""

    __tablename__ = "feature_tree_locks"

    owner_id = Column(String(64), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<FeatureTreeLock {self.owner_id} v{self.version}>"


class DashboardMetric(Base):
    """Per-owner counter shown on the analytics dashboard (e.g. totalFeatures)."""

    __tablename__ = "dashboard_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    title = Column(String(200), nullable=False)
    value = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "key", name="uq_dashboard_metrics_owner_key"),
    )

    def __repr__(self) -> str:
        return f"<DashboardMetric {self.key}={self.value}>"

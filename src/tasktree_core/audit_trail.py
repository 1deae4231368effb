"""Resource-agnostic audit trail.

Every mutation of a feature, task or status records one ActivityLog entry.
Entries of the same (owner_id, subject_id) form a doubly linked chain ordered
by creation time:

    oldest.prev_link == ""  ...  entry[k].next_link -> entry[k+1]
    entry[k+1].prev_link -> entry[k]  ...  newest.next_link == ""

Links are deep-link strings rendered from settings.activity_log_link_template.
Each entry is also appended to the subject's timeline, a lightweight feed of
(entry id, message, created_at) items.

``record_activity`` never commits: it runs inside the caller's transaction so
the mutation and its audit entry become visible together. Recording for one
subject is serialized on its timeline row, locked until that transaction ends.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .config import get_settings
from .database import run_atomic
from .results import ErrorKind, Failure, Result, ResultError

logger = logging.getLogger("tasktree-core.audit_trail")

_LINKED_TOPICS = (models.AuditTopic.UPDATE, models.AuditTopic.DELETE)


def build_activity_link(entry_id: int) -> str:
    """Deep link to an activity log entry."""
    return get_settings().activity_log_link_template.format(id=entry_id)


def resolve_activity_link(link: str) -> Optional[int]:
    """
    Parse a deep link produced by ``build_activity_link`` back into an entry id.

    Returns:
        The entry id, or None for an empty or foreign link
    """
    if not link:
        return None
    prefix, _, suffix = get_settings().activity_log_link_template.partition("{id}")
    if not link.startswith(prefix) or not link.endswith(suffix):
        return None
    raw = link[len(prefix):len(link) - len(suffix)] if suffix else link[len(prefix):]
    try:
        return int(raw)
    except ValueError:
        return None


def get_latest_activity(db: Session, owner_id: str, subject_id: str) -> Optional[models.ActivityLog]:
    """Most recent entry for the subject (creation time, then insertion order)."""
    return (
        db.query(models.ActivityLog)
        .filter(
            models.ActivityLog.owner_id == owner_id,
            models.ActivityLog.subject_id == subject_id,
        )
        .order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .first()
    )


def record_activity(
    db: Session,
    owner_id: str,
    request: schemas.ActivityLogCreate,
) -> models.ActivityLog:
    """
    Append an audit entry and thread it into the subject's chain and timeline.

    For Update and Delete, the subject's latest entry becomes this entry's
    predecessor: the new entry's prev_link points to it and its next_link is
    backfilled to point here. Create entries start a fresh chain segment.

    Args:
        db: Database session (caller's transaction; not committed here)
        owner_id: Owner scope
        request: Entry content

    Returns:
        The created entry (flushed, id assigned)

    Raises:
        ResultError: CONFLICT if the predecessor already has a successor;
            the caller's transaction must be rolled back
    """
    created_at = models.utcnow()
    timeline = _lock_timeline(db, owner_id, request.subject_id, created_at)

    predecessor = None
    if request.topic in _LINKED_TOPICS:
        predecessor = _find_predecessor(db, owner_id, request.subject_id)

    if predecessor is not None:
        if predecessor.next_link:
            logger.error(
                f"Activity {predecessor.id} already links to {predecessor.next_link}; "
                f"refusing to fork the chain of {request.subject_id}"
            )
            raise ResultError(
                Failure(
                    ErrorKind.CONFLICT,
                    f"Activity {predecessor.id} of {request.subject_id} already has a successor",
                )
            )
        if predecessor.created_at > created_at:
            # Keep chain order equal to creation-time order under clock skew
            created_at = predecessor.created_at

    entry = models.ActivityLog(
        owner_id=owner_id,
        subject_id=request.subject_id,
        entity_type=request.entity_type,
        topic=request.topic,
        message=request.message,
        payloads=request.build_payloads(),
        route_to_view=request.route_to_view,
        navigation_workflow=list(request.navigation_workflow),
        prev_link=build_activity_link(predecessor.id) if predecessor is not None else "",
        next_link="",
        modified_before_by=request.actor_before.model_dump(),
        modified_after_by=request.actor_after.model_dump(),
        created_at=created_at,
    )
    db.add(entry)
    db.flush()  # Flush to get the ID before linking

    if predecessor is not None:
        _link_successor(predecessor, entry)

    _append_to_timeline(timeline, entry)
    db.flush()

    logger.debug(
        f"Recorded {request.topic.value} activity {entry.id} for {request.entity_type} {request.subject_id}"
    )
    return entry


def record_audit(
    db: Session,
    owner_id: str,
    request: schemas.ActivityLogCreate,
) -> Result[models.ActivityLog]:
    """Record an entry in its own transaction (for callers with nothing else to commit)."""
    return run_atomic(
        db,
        lambda: Result.success(record_activity(db, owner_id, request)),
        f"audit of {request.entity_type} {request.subject_id}",
    )


def _link_successor(predecessor: models.ActivityLog, successor: models.ActivityLog) -> None:
    """Backfill predecessor.next_link; the only write ever applied to an existing entry."""
    predecessor.next_link = build_activity_link(successor.id)


def _find_predecessor(db: Session, owner_id: str, subject_id: str) -> Optional[models.ActivityLog]:
    return (
        db.query(models.ActivityLog)
        .filter(
            models.ActivityLog.owner_id == owner_id,
            models.ActivityLog.subject_id == subject_id,
        )
        .order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .populate_existing()
        .first()
    )


def _lock_timeline(
    db: Session,
    owner_id: str,
    subject_id: str,
    created_at: datetime,
) -> models.ActivityLogTimeline:
    """
    Lock the subject's timeline row, creating it on first use.

    The row is created inside a SAVEPOINT; losing the insert race to another
    transaction falls back to locking the row it created.
    """
    timeline = _select_timeline_for_update(db, owner_id, subject_id)
    if timeline is None:
        try:
            with db.begin_nested():
                timeline = models.ActivityLogTimeline(
                    owner_id=owner_id,
                    subject_id=subject_id,
                    created_at=created_at,
                )
                db.add(timeline)
                db.flush()
            logger.debug(f"Created timeline for subject {subject_id}")
        except IntegrityError:
            logger.debug(f"Timeline for subject {subject_id} created concurrently; locking existing row")
            timeline = _select_timeline_for_update(db, owner_id, subject_id)
    return timeline


def _select_timeline_for_update(db: Session, owner_id: str, subject_id: str):
    return (
        db.query(models.ActivityLogTimeline)
        .filter(
            models.ActivityLogTimeline.owner_id == owner_id,
            models.ActivityLogTimeline.subject_id == subject_id,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )


def _append_to_timeline(timeline: models.ActivityLogTimeline, entry: models.ActivityLog) -> None:
    timeline.items.append(
        models.ActivityLogTimelineItem(
            activity_log_id=entry.id,
            position=len(timeline.items),
            message=entry.message,
            created_at=entry.created_at,
        )
    )


def _find_timeline(db: Session, owner_id: str, subject_id: str) -> Optional[models.ActivityLogTimeline]:
    return (
        db.query(models.ActivityLogTimeline)
        .filter(
            models.ActivityLogTimeline.owner_id == owner_id,
            models.ActivityLogTimeline.subject_id == subject_id,
        )
        .first()
    )


def get_timeline(db: Session, owner_id: str, subject_id: str) -> Result[models.ActivityLogTimeline]:
    """
    Get the subject's timeline.

    Returns:
        The timeline, or NOT_FOUND if nothing was ever recorded for the subject
    """
    timeline = _find_timeline(db, owner_id, subject_id)
    if timeline is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"No activity recorded for subject {subject_id}")
    return Result.success(timeline)


def get_activity_log(db: Session, owner_id: str, entry_id: int) -> Result[models.ActivityLog]:
    entry = (
        db.query(models.ActivityLog)
        .filter(models.ActivityLog.owner_id == owner_id, models.ActivityLog.id == entry_id)
        .first()
    )
    if entry is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"Activity log {entry_id} not found")
    return Result.success(entry)


def follow_link(db: Session, owner_id: str, link: str) -> Optional[models.ActivityLog]:
    """Resolve a prev/next link to its entry (None for an empty link)."""
    entry_id = resolve_activity_link(link)
    if entry_id is None:
        return None
    result = get_activity_log(db, owner_id, entry_id)
    return result.value if result.ok else None


def get_subject_chain(db: Session, owner_id: str, subject_id: str) -> list[models.ActivityLog]:
    """All entries of a subject, oldest first."""
    return (
        db.query(models.ActivityLog)
        .filter(
            models.ActivityLog.owner_id == owner_id,
            models.ActivityLog.subject_id == subject_id,
        )
        .order_by(models.ActivityLog.created_at.asc(), models.ActivityLog.id.asc())
        .all()
    )


def list_activity_logs(
    db: Session,
    owner_id: str,
    filters: Optional[schemas.ActivityLogFilter] = None,
) -> list[models.ActivityLog]:
    """
    List the owner's activity, newest first.

    Args:
        db: Database session
        owner_id: Owner scope
        filters: Optional entity type, created_at window and pagination

    Returns:
        One page of entries
    """
    filters = filters or schemas.ActivityLogFilter()
    page_size = filters.page_size or get_settings().pagination_per_page

    query = db.query(models.ActivityLog).filter(models.ActivityLog.owner_id == owner_id)
    if filters.entity_type:
        query = query.filter(models.ActivityLog.entity_type == filters.entity_type)
    if filters.start:
        query = query.filter(models.ActivityLog.created_at >= filters.start)
    if filters.end:
        query = query.filter(models.ActivityLog.created_at <= filters.end)

    return (
        query.order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .offset((filters.page - 1) * page_size)
        .limit(page_size)
        .all()
    )

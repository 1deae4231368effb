"""Feature tree operations: create, rename, cascading toggle and cascading delete.

Each mutation runs as one transaction through ``database.run_atomic``:

    lock owner tree -> validate -> mutate node(s) -> maintain ancestor
    indexes -> update dashboard -> record audit entries -> commit

Validation failures return a failed ``Result`` before anything is written;
the transaction is rolled back and the tree is left untouched.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from . import activation, ancestry, audit_trail, dashboard, models, schemas, store
from .database import run_atomic
from .locking import acquire_tree_lock
from .results import ErrorKind, Result
from .snapshots import feature_snapshot, system_actor

logger = logging.getLogger("tasktree-core.feature_tree")

FEATURE_ROUTE = "/features/{fid}"


@dataclass
class ToggleOutcome:
    """New state of the toggled feature and every node it affected."""

    is_active: bool
    affected: list[models.Feature] = field(default_factory=list)

    @property
    def affected_fids(self) -> list[str]:
        return [f.fid for f in self.affected]


# ============================================================================
# Mutations
# ============================================================================

def create_feature(
    db: Session,
    owner_id: str,
    data: schemas.FeatureCreate,
    actor: Optional[schemas.ActorSnapshot] = None,
) -> Result[models.Feature]:
    """
    Create a feature, optionally under a parent.

    Args:
        db: Database session
        owner_id: Owner scope
        data: Name, optional parent fid and initial state
        actor: Who is creating the feature (defaults to the owner)

    Returns:
        The created feature, or
        CONFLICT if the name is taken (case-insensitive),
        NOT_FOUND if the parent does not exist,
        FORBIDDEN if created active under an inactive parent
    """
    actor = actor or system_actor(owner_id)

    def work() -> Result[models.Feature]:
        acquire_tree_lock(db, owner_id)

        clash = store.find_name_clash(db, owner_id, data.name)
        if clash:
            logger.warning(f"Feature name '{data.name}' already used by {clash.fid} for owner {owner_id}")
            return Result.fail(ErrorKind.CONFLICT, f"Feature name '{data.name}' is already registered")

        ancestors: list[models.Feature] = []
        if data.parent_fid:
            parent = store.get_feature(db, owner_id, data.parent_fid)
            if parent is None:
                logger.warning(f"Parent feature {data.parent_fid} not found for new feature '{data.name}'")
                return Result.fail(ErrorKind.NOT_FOUND, f"Parent feature {data.parent_fid} not found")
            if data.is_active:
                failure = activation.validate_activation(data.name, parent)
                if failure:
                    return Result.from_failure(failure)
            ancestors = ancestry.collect_ancestors(db, owner_id, parent.fid)

        now = models.utcnow()
        feature = models.Feature(
            fid=models.new_fid(),
            owner_id=owner_id,
            name=data.name,
            name_key=models.name_key(data.name),
            parent_fid=data.parent_fid,
            is_active=data.is_active,
            child_ids=[],
            all_child_ids=[],
            created_at=now,
            updated_at=now,
            modified_by=actor.id,
        )
        db.add(feature)
        db.flush()  # Flush to get the ID before updating ancestor indexes

        ancestry.attach_descendant(ancestors, feature.id)
        dashboard.adjust_metric(
            db, owner_id, dashboard.TOTAL_FEATURES, dashboard.TOTAL_FEATURES_TITLE, 1
        )
        _record_feature_activity(
            db,
            owner_id,
            feature,
            models.AuditTopic.CREATE,
            f"Feature '{feature.name}' created",
            new_snapshot=feature_snapshot(feature),
            actor=actor,
        )
        logger.debug(f"Created feature {feature.fid} under {data.parent_fid or 'root'} for owner {owner_id}")
        return Result.success(feature)

    return run_atomic(db, work, f"create feature '{data.name}'")


def toggle_feature(
    db: Session,
    owner_id: str,
    fid: str,
    actor: Optional[schemas.ActorSnapshot] = None,
) -> Result[ToggleOutcome]:
    """
    Flip a feature between active and inactive.

    Activation is refused while the parent is inactive. Deactivation also
    deactivates every descendant. Descendants are never reactivated.

    Args:
        db: Database session
        owner_id: Owner scope
        fid: Feature to toggle
        actor: Who is toggling (defaults to the owner)

    Returns:
        ToggleOutcome with the new state and affected nodes, or
        NOT_FOUND if the feature does not exist,
        FORBIDDEN if activation is blocked by an inactive parent
    """
    actor = actor or system_actor(owner_id)

    def work() -> Result[ToggleOutcome]:
        acquire_tree_lock(db, owner_id)

        feature = store.get_feature(db, owner_id, fid)
        if feature is None:
            logger.warning(f"Toggle requested for missing feature {fid} of owner {owner_id}")
            return Result.fail(ErrorKind.NOT_FOUND, f"Feature {fid} not found")

        is_active = activation.next_activation_state(feature)
        now = models.utcnow()

        if is_active:
            parent = store.get_feature(db, owner_id, feature.parent_fid) if feature.parent_fid else None
            failure = activation.validate_activation(feature.name, parent)
            if failure:
                return Result.from_failure(failure)
            old_snapshot = feature_snapshot(feature)
            _set_active(feature, True, actor, now)
            descendants: list[models.Feature] = []
            cascaded: list[tuple[models.Feature, list[schemas.SnapshotField]]] = []
        else:
            old_snapshot = feature_snapshot(feature)
            descendants = store.get_features_by_ids(db, owner_id, feature.all_child_ids or [])
            cascaded = [(d, feature_snapshot(d)) for d in activation.cascade_targets(feature, descendants)]
            _set_active(feature, False, actor, now)
            for descendant, _ in cascaded:
                _set_active(descendant, False, actor, now)
        db.flush()

        verb = activation.toggle_verb(is_active)
        _record_feature_activity(
            db,
            owner_id,
            feature,
            models.AuditTopic.UPDATE,
            f"Feature '{feature.name}' {verb.lower()}",
            new_snapshot=feature_snapshot(feature),
            old_snapshot=old_snapshot,
            actor=actor,
        )
        for descendant, descendant_old in cascaded:
            _record_feature_activity(
                db,
                owner_id,
                descendant,
                models.AuditTopic.UPDATE,
                f"Feature '{descendant.name}' deactivated with higher level feature '{feature.name}'",
                new_snapshot=feature_snapshot(descendant),
                old_snapshot=descendant_old,
                actor=actor,
            )

        logger.debug(f"{verb} feature {fid} ({len(cascaded)} descendants cascaded)")
        return Result.success(ToggleOutcome(is_active=is_active, affected=[feature] + descendants))

    return run_atomic(db, work, f"toggle feature {fid}")


def rename_feature(
    db: Session,
    owner_id: str,
    fid: str,
    data: schemas.FeatureRename,
    actor: Optional[schemas.ActorSnapshot] = None,
) -> Result[models.Feature]:
    """
    Rename a feature.

    Args:
        db: Database session
        owner_id: Owner scope
        fid: Feature to rename
        data: New name
        actor: Who is renaming (defaults to the owner)

    Returns:
        The renamed feature, or
        NOT_FOUND if the feature does not exist,
        NO_CHANGE if the name is identical to the current one,
        CONFLICT if another feature already uses the name (case-insensitive)
    """
    actor = actor or system_actor(owner_id)

    def work() -> Result[models.Feature]:
        acquire_tree_lock(db, owner_id)

        feature = store.get_feature(db, owner_id, fid)
        if feature is None:
            logger.warning(f"Rename requested for missing feature {fid} of owner {owner_id}")
            return Result.fail(ErrorKind.NOT_FOUND, f"Feature {fid} not found")

        if feature.name == data.name:
            return Result.fail(ErrorKind.NO_CHANGE, "Nothing changed: the name is the same as before")

        clash = store.find_name_clash(db, owner_id, data.name, exclude_fid=fid)
        if clash:
            logger.warning(f"Rename of {fid} to '{data.name}' clashes with {clash.fid}")
            return Result.fail(ErrorKind.CONFLICT, f"Feature name '{data.name}' is already registered")

        old_snapshot = feature_snapshot(feature)
        old_name = feature.name
        feature.name = data.name
        feature.name_key = models.name_key(data.name)
        feature.updated_at = models.utcnow()
        feature.modified_by = actor.id
        db.flush()

        _record_feature_activity(
            db,
            owner_id,
            feature,
            models.AuditTopic.UPDATE,
            f"Feature '{old_name}' renamed to '{feature.name}'",
            new_snapshot=feature_snapshot(feature),
            old_snapshot=old_snapshot,
            actor=actor,
        )
        return Result.success(feature)

    return run_atomic(db, work, f"rename feature {fid}")


def delete_feature(
    db: Session,
    owner_id: str,
    fid: str,
    actor: Optional[schemas.ActorSnapshot] = None,
) -> Result[list[str]]:
    """
    Delete a feature and all of its descendants.

    Ancestors lose the feature from child_ids (parent only) and the whole
    removed subtree from all_child_ids, in the same transaction.

    Args:
        db: Database session
        owner_id: Owner scope
        fid: Feature to delete
        actor: Who is deleting (defaults to the owner)

    Returns:
        Deleted fids (the feature first, then descendants), or
        NOT_FOUND if the feature does not exist
    """
    actor = actor or system_actor(owner_id)

    def work() -> Result[list[str]]:
        acquire_tree_lock(db, owner_id)

        feature = store.get_feature(db, owner_id, fid)
        if feature is None:
            logger.warning(f"Delete requested for missing feature {fid} of owner {owner_id}")
            return Result.fail(ErrorKind.NOT_FOUND, f"Feature {fid} not found")

        node_id = feature.id
        root_name = feature.name
        removed_ids = list(feature.all_child_ids or [])
        descendants = store.get_features_by_ids(db, owner_id, removed_ids)
        deleted = [feature] + descendants
        ancestors = ancestry.collect_ancestors(db, owner_id, feature.parent_fid)

        # Capture everything the audit entries need before the rows go away
        tombstones = [(node.fid, node.name, feature_snapshot(node)) for node in deleted]

        store.delete_features(db, deleted)
        ancestry.detach_subtree(ancestors, node_id, removed_ids)
        dashboard.adjust_metric(
            db, owner_id, dashboard.TOTAL_FEATURES, dashboard.TOTAL_FEATURES_TITLE, -len(deleted)
        )

        for deleted_fid, name, snapshot in tombstones:
            if deleted_fid == fid:
                message = f"Feature '{name}' deleted"
            else:
                message = f"Feature '{name}' deleted with higher level feature '{root_name}'"
            _record_activity_for_subject(
                db,
                owner_id,
                deleted_fid,
                name,
                models.AuditTopic.DELETE,
                message,
                new_snapshot=snapshot,
                actor=actor,
            )

        logger.debug(f"Deleted feature {fid} and {len(descendants)} descendants for owner {owner_id}")
        return Result.success([deleted_fid for deleted_fid, _, _ in tombstones])

    return run_atomic(db, work, f"delete feature {fid}")


def repair_feature_indexes(db: Session, owner_id: str) -> Result[int]:
    """Recompute every cached index of the owner's tree from parent pointers."""

    def work() -> Result[int]:
        acquire_tree_lock(db, owner_id)
        return Result.success(ancestry.rebuild_indexes(db, owner_id))

    return run_atomic(db, work, f"repair feature indexes of owner {owner_id}")


# ============================================================================
# Reads
# ============================================================================

def get_feature(db: Session, owner_id: str, fid: str) -> Optional[models.Feature]:
    return store.get_feature(db, owner_id, fid)


def list_root_features(db: Session, owner_id: str) -> list[models.Feature]:
    """Top-level features of the owner, in creation order."""
    return store.get_root_features(db, owner_id)


def get_feature_children(db: Session, owner_id: str, fid: str) -> Result[list[models.Feature]]:
    """
    Direct children of a feature, in child_ids order.

    Returns:
        The children (possibly empty), or NOT_FOUND if the feature does not exist
    """
    feature = store.get_feature(db, owner_id, fid)
    if feature is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"Feature {fid} not found")
    return Result.success(store.get_features_by_ids(db, owner_id, feature.child_ids or []))


def get_feature_family(db: Session, owner_id: str, fid: str) -> Result[list[models.Feature]]:
    """The feature followed by all of its descendants."""
    feature = store.get_feature(db, owner_id, fid)
    if feature is None:
        return Result.fail(ErrorKind.NOT_FOUND, f"Feature {fid} not found")
    return Result.success([feature] + store.get_features_by_ids(db, owner_id, feature.all_child_ids or []))


def get_feature_analytics(db: Session, owner_id: str) -> list[models.DashboardMetric]:
    return dashboard.get_dashboard(db, owner_id, [dashboard.TOTAL_FEATURES])


def feature_to_response(feature: models.Feature) -> schemas.FeatureResponse:
    """Convert Feature model to FeatureResponse schema."""
    return schemas.FeatureResponse.model_validate(feature)


def toggle_to_response(outcome: ToggleOutcome) -> schemas.ToggleResponse:
    return schemas.ToggleResponse(
        is_active=outcome.is_active,
        features=[feature_to_response(f) for f in outcome.affected],
    )


# ============================================================================
# Helpers
# ============================================================================

def _set_active(feature: models.Feature, is_active: bool, actor: schemas.ActorSnapshot, now) -> None:
    feature.is_active = is_active
    feature.updated_at = now
    feature.modified_by = actor.id


def _record_feature_activity(
    db: Session,
    owner_id: str,
    feature: models.Feature,
    topic: models.AuditTopic,
    message: str,
    new_snapshot: list[schemas.SnapshotField],
    actor: schemas.ActorSnapshot,
    old_snapshot: Optional[list[schemas.SnapshotField]] = None,
) -> models.ActivityLog:
    return _record_activity_for_subject(
        db,
        owner_id,
        feature.fid,
        feature.name,
        topic,
        message,
        new_snapshot=new_snapshot,
        old_snapshot=old_snapshot,
        actor=actor,
    )


def _record_activity_for_subject(
    db: Session,
    owner_id: str,
    fid: str,
    name: str,
    topic: models.AuditTopic,
    message: str,
    new_snapshot: list[schemas.SnapshotField],
    actor: schemas.ActorSnapshot,
    old_snapshot: Optional[list[schemas.SnapshotField]] = None,
) -> models.ActivityLog:
    """Record a Feature audit entry; the before-actor is whoever made the previous entry."""
    latest = audit_trail.get_latest_activity(db, owner_id, fid)
    if latest is not None and latest.modified_after_by:
        actor_before = schemas.ActorSnapshot.model_validate(latest.modified_after_by)
    else:
        actor_before = actor

    return audit_trail.record_activity(
        db,
        owner_id,
        schemas.ActivityLogCreate(
            subject_id=fid,
            entity_type=models.EntityType.FEATURE,
            topic=topic,
            message=message,
            new_snapshot=new_snapshot,
            old_snapshot=old_snapshot,
            route_to_view=FEATURE_ROUTE.format(fid=fid),
            navigation_workflow=["Features", name],
            actor_before=actor_before,
            actor_after=actor,
        ),
    )

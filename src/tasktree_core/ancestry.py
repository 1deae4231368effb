"""Maintenance of the denormalized child and descendant indexes.

Each feature caches two lists of storage ids:
- child_ids: ids of nodes whose parent_fid is this node's fid
- all_child_ids: child_ids plus, recursively, every child's all_child_ids

Create and delete keep both lists exact by walking the ancestor chain of the
affected node and appending or pulling ids. The verification helpers
recompute the lists from parent_fid pointers alone, so drift can be detected
and repaired.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import models, store

logger = logging.getLogger("tasktree-core.ancestry")


def collect_ancestors(
    db: Session,
    owner_id: str,
    parent_fid: Optional[str],
) -> list[models.Feature]:
    """
    Walk parent_fid pointers upward from ``parent_fid`` to a root.

    Args:
        db: Database session
        owner_id: Owner scope
        parent_fid: Starting node (the immediate parent of the node of interest)

    Returns:
        Ancestors nearest first; the first element is the immediate parent.
        Empty if ``parent_fid`` is None or does not resolve.
    """
    ancestors: list[models.Feature] = []
    seen: set[str] = set()
    fid = parent_fid
    while fid:
        if fid in seen:
            logger.error(f"Cycle in feature hierarchy of owner {owner_id} at {fid}; stopping ancestor walk")
            break
        seen.add(fid)
        node = store.get_feature(db, owner_id, fid)
        if node is None:
            break
        ancestors.append(node)
        fid = node.parent_fid
    return ancestors


def attach_descendant(ancestors: list[models.Feature], node_id: int) -> None:
    """
    Register a newly inserted node with its ancestors.

    Appends ``node_id`` to the immediate parent's child_ids and to every
    ancestor's all_child_ids (parent included).
    """
    if not ancestors:
        return
    parent = ancestors[0]
    parent.child_ids = list(parent.child_ids or []) + [node_id]
    parent.updated_at = models.utcnow()
    for ancestor in ancestors:
        ancestor.all_child_ids = list(ancestor.all_child_ids or []) + [node_id]


def detach_subtree(
    ancestors: list[models.Feature],
    node_id: int,
    removed_ids: Iterable[int],
) -> None:
    """
    Purge a removed subtree from its ancestors.

    Pulls ``node_id`` from the immediate parent's child_ids and
    ``{node_id} | removed_ids`` from every ancestor's all_child_ids.
    """
    if not ancestors:
        return
    parent = ancestors[0]
    parent.child_ids = [i for i in (parent.child_ids or []) if i != node_id]
    parent.updated_at = models.utcnow()

    purged = set(removed_ids)
    purged.add(node_id)
    for ancestor in ancestors:
        ancestor.all_child_ids = [i for i in (ancestor.all_child_ids or []) if i not in purged]


def compute_closure(nodes: list[models.Feature]) -> dict[int, tuple[list[int], list[int]]]:
    """
    Recompute both indexes from parent_fid pointers.

    Args:
        nodes: Every feature of one owner

    Returns:
        Map of storage id -> (child ids ordered by id, descendant ids in
        depth-first order)
    """
    by_fid = {n.fid: n for n in nodes}
    children: dict[int, list[int]] = {n.id: [] for n in nodes}
    for node in sorted(nodes, key=lambda n: n.id):
        parent = by_fid.get(node.parent_fid) if node.parent_fid else None
        if parent is not None:
            children[parent.id].append(node.id)

    closure: dict[int, tuple[list[int], list[int]]] = {}
    for node in nodes:
        descendants: list[int] = []
        seen = {node.id}
        stack = list(reversed(children[node.id]))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            descendants.append(current)
            stack.extend(reversed(children[current]))
        closure[node.id] = (children[node.id], descendants)
    return closure


@dataclass
class IndexDrift:
    """Difference between a node's cached indexes and the recomputed ones."""

    fid: str
    missing_children: list[int] = field(default_factory=list)
    unexpected_children: list[int] = field(default_factory=list)
    missing_descendants: list[int] = field(default_factory=list)
    unexpected_descendants: list[int] = field(default_factory=list)


def find_index_drift(db: Session, owner_id: str) -> list[IndexDrift]:
    """
    Compare every cached index of the owner's tree with its recomputed value.

    Returns:
        One IndexDrift per inconsistent node; empty when every index is exact
    """
    nodes = store.get_all_features(db, owner_id)
    closure = compute_closure(nodes)
    drift: list[IndexDrift] = []
    for node in nodes:
        expected_children, expected_all = closure[node.id]
        cached_children = set(node.child_ids or [])
        cached_all = set(node.all_child_ids or [])
        entry = IndexDrift(
            fid=node.fid,
            missing_children=sorted(set(expected_children) - cached_children),
            unexpected_children=sorted(cached_children - set(expected_children)),
            missing_descendants=sorted(set(expected_all) - cached_all),
            unexpected_descendants=sorted(cached_all - set(expected_all)),
        )
        if (
            entry.missing_children
            or entry.unexpected_children
            or entry.missing_descendants
            or entry.unexpected_descendants
        ):
            drift.append(entry)
    if drift:
        logger.warning(f"Found index drift on {len(drift)} features of owner {owner_id}")
    return drift


def rebuild_indexes(db: Session, owner_id: str) -> int:
    """
    Rewrite child_ids/all_child_ids of every drifted node from parent pointers.

    Existing child order is kept for ids that are still valid; missing ids
    are appended. Does not commit.

    Returns:
        Number of nodes rewritten
    """
    nodes = store.get_all_features(db, owner_id)
    closure = compute_closure(nodes)
    rewritten = 0
    for node in nodes:
        expected_children, expected_all = closure[node.id]
        new_children = _merge_ordered(node.child_ids or [], expected_children)
        new_all = _merge_ordered(node.all_child_ids or [], expected_all)
        if new_children != list(node.child_ids or []) or new_all != list(node.all_child_ids or []):
            node.child_ids = new_children
            node.all_child_ids = new_all
            rewritten += 1
    db.flush()
    logger.info(f"Rebuilt indexes of {rewritten} features for owner {owner_id}")
    return rewritten


def _merge_ordered(cached: list[int], expected: list[int]) -> list[int]:
    valid = set(expected)
    kept: list[int] = []
    for i in cached:
        if i in valid and i not in kept:
            kept.append(i)
    return kept + [i for i in expected if i not in kept]

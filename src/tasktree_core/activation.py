"""Activation rules for feature nodes.

A feature toggles between two states, active and inactive:
- Activating is gated: a node whose parent is inactive cannot become active
- Deactivating cascades: every descendant becomes inactive with the node
- Reactivating a parent never reactivates its descendants

Gating is checked at the moment of the change only. A descendant left
inactive by a cascade stays inactive until it is toggled on its own.
"""
import logging
from typing import Optional

from .models import Feature
from .results import ErrorKind, Failure

logger = logging.getLogger("tasktree-core.activation")


def next_activation_state(feature: Feature) -> bool:
    """Toggling always flips the current state."""
    return not feature.is_active


def validate_activation(
    feature_name: str,
    parent: Optional[Feature],
) -> Optional[Failure]:
    """
    Check whether a feature may become active under ``parent``.

    Args:
        feature_name: Name of the feature being activated (for the message)
        parent: Resolved parent, or None for a root or a dangling parent_fid

    Returns:
        None if activation is allowed, otherwise a FORBIDDEN failure
    """
    if parent is None or parent.is_active:
        return None

    message = (
        f"Cannot activate '{feature_name}': higher level feature '{parent.name}' is currently inactive. "
        f"Activate '{parent.name}' first."
    )
    logger.warning(f"Blocked activation: {message}")
    return Failure(kind=ErrorKind.FORBIDDEN, message=message)


def cascade_targets(feature: Feature, descendants: list[Feature]) -> list[Feature]:
    """
    Nodes whose state actually changes when ``feature`` is deactivated.

    Args:
        feature: Node being deactivated
        descendants: Every node in ``feature.all_child_ids``

    Returns:
        The descendants that are still active (the node itself excluded)
    """
    changed = [d for d in descendants if d.is_active]
    logger.debug(
        f"Deactivating {feature.fid} cascades to {len(changed)} of {len(descendants)} descendants"
    )
    return changed


def toggle_verb(is_active: bool) -> str:
    return "Activated" if is_active else "Deactivated"

"""Tests for activation gating and cascade rules."""
from tasktree_core.activation import (
    cascade_targets,
    next_activation_state,
    toggle_verb,
    validate_activation,
)
from tasktree_core.models import Feature
from tasktree_core.results import ErrorKind


def _feature(name: str, is_active: bool, fid: str = None) -> Feature:
    return Feature(fid=fid or name.lower(), owner_id="u", name=name, is_active=is_active, modified_by="u")


class TestNextActivationState:
    """Toggling flips the current state."""

    def test_active_becomes_inactive(self):
        assert next_activation_state(_feature("Billing", True)) is False

    def test_inactive_becomes_active(self):
        assert next_activation_state(_feature("Billing", False)) is True


class TestValidateActivation:
    """Test activation gating by the parent's state."""

    def test_root_can_always_activate(self):
        assert validate_activation("Billing", None) is None

    def test_active_parent_allows_activation(self):
        parent = _feature("Billing", True)
        assert validate_activation("Invoices", parent) is None

    def test_inactive_parent_blocks_activation(self):
        parent = _feature("Billing", False)

        failure = validate_activation("Invoices", parent)

        assert failure is not None
        assert failure.kind == ErrorKind.FORBIDDEN
        assert "higher level feature 'Billing'" in failure.message
        assert "Invoices" in failure.message


class TestCascadeTargets:
    """Only descendants that are still active change on deactivation."""

    def test_only_active_descendants_are_targets(self):
        root = _feature("Billing", True)
        active_child = _feature("Invoices", True)
        inactive_child = _feature("Refunds", False)

        targets = cascade_targets(root, [active_child, inactive_child])

        assert targets == [active_child]

    def test_no_descendants(self):
        assert cascade_targets(_feature("Billing", True), []) == []


def test_toggle_verb():
    assert toggle_verb(True) == "Activated"
    assert toggle_verb(False) == "Deactivated"

"""tasktree-core - feature tree engine and audit trail.

Modules:
- feature_tree: create, rename, cascading toggle and cascading delete
- ancestry: child/descendant index maintenance and verification
- activation: activation gating and cascade rules
- audit_trail: chained activity log entries and per-subject timelines
- snapshots: projection of entities into audit snapshots
- results: typed operation outcomes
"""

__version__ = "1.0.0"

from .audit_trail import get_timeline, record_activity, record_audit
from .feature_tree import (
    ToggleOutcome,
    create_feature,
    delete_feature,
    rename_feature,
    toggle_feature,
)
from .results import ErrorKind, Failure, Result

__all__ = [
    "ErrorKind",
    "Failure",
    "Result",
    "ToggleOutcome",
    "create_feature",
    "delete_feature",
    "get_timeline",
    "record_activity",
    "record_audit",
    "rename_feature",
    "toggle_feature",
    "__version__",
]

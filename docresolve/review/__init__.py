"""Review cases, their lifecycle and approved-result export."""

from .cases import AuditEntry, ReviewCase, ReviewCaseStore, RevisionEntry
from .export import (
    ExportSnapshot,
    InMemorySink,
    SnapshotDispatcher,
    SnapshotSink,
    snapshot_from_auto_approval,
    snapshot_from_case,
)
from .state_machine import (
    OPEN_STATES,
    TRANSITIONS,
    ReviewAction,
    ReviewState,
    allowed_actions,
    is_legal_path,
    next_state,
)

__all__ = [
    "AuditEntry",
    "ExportSnapshot",
    "InMemorySink",
    "OPEN_STATES",
    "ReviewAction",
    "ReviewCase",
    "ReviewCaseStore",
    "ReviewState",
    "RevisionEntry",
    "SnapshotDispatcher",
    "SnapshotSink",
    "TRANSITIONS",
    "allowed_actions",
    "is_legal_path",
    "next_state",
    "snapshot_from_auto_approval",
    "snapshot_from_case",
]

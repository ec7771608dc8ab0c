"""Workflow History and Version Control module for ArchonFlow."""

from .audit import HistoryLog
from .branches import BranchManager
from .controller import VersionController
from .differ import SpecDiffer, diff_specs
from .exceptions import (
    BranchNotFoundError,
    ConcurrentModification,
    CrossWorkflowViolation,
    DuplicateNameError,
    InactiveBranchError,
    InvalidChangeType,
    NoCommonAncestor,
    NotFoundError,
    ProtectedBranchViolation,
    SpecIntegrityError,
    VersionControlError,
    VersionNotFoundError,
    WorkflowAlreadyInitialized,
)
from .locks import WorkflowLocks
from .merge import MergePlan, three_way_merge
from .models import (
    Branch,
    BranchStatus,
    ChangeType,
    Diff,
    DiffSummary,
    Edge,
    FieldChange,
    HistoryAction,
    HistoryEntry,
    HistoryFilter,
    MergeResult,
    MergeStatus,
    MergeStrategy,
    Node,
    NodeModification,
    NodeType,
    Position,
    Version,
    VersionComparison,
    VersionSummary,
    WorkflowSpec,
    bump_version,
)
from .versions import VersionStore

__all__ = [
    "VersionController",
    "VersionStore",
    "BranchManager",
    "SpecDiffer",
    "diff_specs",
    "three_way_merge",
    "MergePlan",
    "HistoryLog",
    "WorkflowLocks",
    "WorkflowSpec",
    "Node",
    "NodeType",
    "Edge",
    "Position",
    "Version",
    "Branch",
    "BranchStatus",
    "ChangeType",
    "Diff",
    "DiffSummary",
    "FieldChange",
    "NodeModification",
    "MergeResult",
    "MergeStatus",
    "MergeStrategy",
    "VersionComparison",
    "VersionSummary",
    "HistoryAction",
    "HistoryEntry",
    "HistoryFilter",
    "bump_version",
    "VersionControlError",
    "NotFoundError",
    "VersionNotFoundError",
    "BranchNotFoundError",
    "DuplicateNameError",
    "ProtectedBranchViolation",
    "CrossWorkflowViolation",
    "InactiveBranchError",
    "InvalidChangeType",
    "NoCommonAncestor",
    "ConcurrentModification",
    "SpecIntegrityError",
    "WorkflowAlreadyInitialized",
]

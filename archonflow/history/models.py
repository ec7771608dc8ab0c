"""Data model for workflow versioning, branching and diffing."""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import InvalidChangeType

SEMVER_PATTERN = re.compile(r'^\d+\.\d+\.\d+$')
INITIAL_VERSION = "1.0.0"


class NodeType(str, Enum):
    """Node types available in the workflow designer."""
    AGENT = "agent"
    TOOL = "tool"
    CONDITION = "condition"
    DATA = "data"
    EMAIL = "email"
    WEBHOOK = "webhook"
    TRIGGER = "trigger"
    MEMORY_READ = "memory_read"
    MEMORY_WRITE = "memory_write"
    AGENT_COLLABORATION = "agent_collaboration"
    HUMAN_INPUT = "human_input"
    LOOP = "loop"


class ChangeType(str, Enum):
    """Semantic version increment kinds."""
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class BranchStatus(str, Enum):
    """Branch lifecycle states."""
    ACTIVE = "active"
    MERGED = "merged"
    ARCHIVED = "archived"


class MergeStrategy(str, Enum):
    """Strategies for merging branches."""
    AUTO = "auto"
    OURS = "ours"
    THEIRS = "theirs"


class MergeStatus(str, Enum):
    """Outcome of a merge request."""
    MERGED = "merged"
    CONFLICTS = "conflicts"


class HistoryAction(str, Enum):
    """Actions recorded in the workflow history."""
    WORKFLOW_INITIALIZED = "workflow_initialized"
    VERSION_CREATED = "version_created"
    VERSION_TAGGED = "version_tagged"
    BRANCH_CREATED = "branch_created"
    BRANCH_ARCHIVED = "branch_archived"
    ROLLBACK = "rollback"
    MERGE = "merge"


def parse_change_type(value: Any) -> ChangeType:
    """Coerce a change type, refusing anything but major, minor or patch."""
    if isinstance(value, ChangeType):
        return value
    try:
        return ChangeType(value)
    except ValueError as e:
        raise InvalidChangeType(value) from e


def bump_version(version: str, change_type: Any) -> str:
    """Increment a ``MAJOR.MINOR.PATCH`` string."""
    level = parse_change_type(change_type)
    if not SEMVER_PATTERN.match(version):
        raise ValueError(f"Version number must be in semantic version format (x.y.z): {version}")
    major, minor, patch = (int(part) for part in version.split('.'))

    if level == ChangeType.MAJOR:
        return f"{major + 1}.0.0"
    elif level == ChangeType.MINOR:
        return f"{major}.{minor + 1}.0"
    else:
        return f"{major}.{minor}.{patch + 1}"


class Position(BaseModel):
    """Canvas position of a node."""

    x: float = Field(..., description="Horizontal coordinate")
    y: float = Field(..., description="Vertical coordinate")


class Node(BaseModel):
    """A workflow node."""

    id: str = Field(..., min_length=1, description="Node ID, unique within a spec")
    type: NodeType = Field(..., description="Node type")
    label: str = Field(default="", description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")
    position: Optional[Position] = Field(default=None, description="Canvas position")

    model_config = ConfigDict(from_attributes=True)


class Edge(BaseModel):
    """A directed connection between two nodes, identified by its endpoints."""

    source: str = Field(
        ..., validation_alias=AliasChoices("source", "from"), description="Source node ID"
    )
    target: str = Field(
        ..., validation_alias=AliasChoices("target", "to"), description="Target node ID"
    )
    label: Optional[str] = Field(default=None, description="Edge label")
    condition: Optional[str] = Field(default=None, description="Routing condition")

    model_config = ConfigDict(from_attributes=True)

    @property
    def key(self) -> Tuple[str, str]:
        """Identity of the edge."""
        return self.source, self.target


class WorkflowSpec(BaseModel):
    """A workflow's node/edge graph at a point in time."""

    nodes: List[Node] = Field(default_factory=list, description="Ordered nodes")
    edges: List[Edge] = Field(default_factory=list, description="Edges between nodes")
    collaboration_strategy: Optional[str] = Field(
        default=None, description="Agent collaboration strategy"
    )

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def validate_graph(self):
        """Validate node uniqueness and edge endpoints."""
        node_ids = set()
        for node in self.nodes:
            if node.id in node_ids:
                raise ValueError(f"Duplicate node id '{node.id}'")
            node_ids.add(node.id)

        edge_keys = set()
        for edge in self.edges:
            for endpoint in edge.key:
                if endpoint not in node_ids:
                    raise ValueError(
                        f"Edge {edge.source}->{edge.target} references unknown node '{endpoint}'"
                    )
            if edge.key in edge_keys:
                raise ValueError(f"Duplicate edge {edge.source}->{edge.target}")
            edge_keys.add(edge.key)
        return self

    def node_map(self) -> Dict[str, Node]:
        """Nodes keyed by id."""
        return {node.id: node for node in self.nodes}

    def edge_map(self) -> Dict[Tuple[str, str], Edge]:
        """Edges keyed by ``(source, target)``."""
        return {edge.key: edge for edge in self.edges}


class Version(BaseModel):
    """Immutable snapshot of a workflow spec with provenance."""

    id: str = Field(..., description="Version ID")
    workflow_id: str = Field(..., description="Owning workflow ID")
    branch_id: str = Field(..., description="Branch this snapshot belongs to")
    version: str = Field(..., description="Semantic version string")
    version_number: int = Field(..., ge=1, description="Per-workflow sequence number")
    spec: WorkflowSpec = Field(..., description="Full spec snapshot")
    change_summary: str = Field(default="", description="Change summary")
    change_type: ChangeType = Field(..., description="Increment kind")
    parent_version_id: Optional[str] = Field(default=None, description="Parent version ID")
    created_by: str = Field(..., description="Author email")
    created_at: datetime = Field(..., description="Creation timestamp")
    tags: List[str] = Field(default_factory=list, description="Tags")
    is_release: bool = Field(default=False, description="Whether this is a release")
    org_id: Optional[str] = Field(default=None, description="Organization ID")

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('version')
    @classmethod
    def validate_version(cls, v):
        """Validate semantic version number format."""
        if not SEMVER_PATTERN.match(v):
            raise ValueError("Version number must be in semantic version format (x.y.z)")
        return v

    def is_initial_version(self) -> bool:
        """Check if this is an initial version (no parent)."""
        return self.parent_version_id is None

    def get_version_parts(self) -> Tuple[int, int, int]:
        """Get version parts as tuple (major, minor, patch)."""
        parts = self.version.split('.')
        return int(parts[0]), int(parts[1]), int(parts[2])

    def increment_version(self, level: Any = ChangeType.PATCH) -> str:
        """Increment version number."""
        return bump_version(self.version, level)


class Branch(BaseModel):
    """Named, movable pointer into a workflow's version graph."""

    id: str = Field(..., description="Branch ID")
    workflow_id: str = Field(..., description="Owning workflow ID")
    name: str = Field(..., description="Branch name")
    description: Optional[str] = Field(default=None, description="Branch description")
    is_default: bool = Field(default=False, description="Whether this is the default branch")
    is_protected: bool = Field(default=False, description="Whether merges require approval")
    base_version_id: str = Field(..., description="Version the branch forked from")
    head_version_id: str = Field(..., description="Current tip")
    status: BranchStatus = Field(default=BranchStatus.ACTIVE, description="Lifecycle state")
    created_by: str = Field(..., description="Author email")
    created_at: datetime = Field(..., description="Creation timestamp")
    org_id: Optional[str] = Field(default=None, description="Organization ID")
    merged_at: Optional[datetime] = Field(default=None, description="When branch was merged")
    merged_by: Optional[str] = Field(default=None, description="Who merged the branch")
    merged_into: Optional[str] = Field(default=None, description="Branch ID merged into")

    model_config = ConfigDict(from_attributes=True)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        """Validate branch name."""
        if not v or not v.strip():
            raise ValueError("Branch name cannot be empty")
        if v != v.strip() or v.startswith('/') or v.endswith('/'):
            raise ValueError("Branch name cannot start/end with / or spaces")
        if not re.match(r'^[a-zA-Z0-9\-_/.]+$', v):
            raise ValueError("Branch name contains invalid characters")
        return v

    @property
    def is_active(self) -> bool:
        return self.status == BranchStatus.ACTIVE


class FieldChange(BaseModel):
    """A single field difference of a modified node."""

    field: str
    before: Any = None
    after: Any = None


class NodeModification(BaseModel):
    """A node present in both specs whose fields differ."""

    id: str
    before: Node
    after: Node
    changes: List[FieldChange] = Field(default_factory=list)

    @property
    def changed_fields(self) -> List[str]:
        return [change.field for change in self.changes]


class NodeChanges(BaseModel):
    added: List[Node] = Field(default_factory=list)
    removed: List[Node] = Field(default_factory=list)
    modified: List[NodeModification] = Field(default_factory=list)


class EdgeChanges(BaseModel):
    added: List[Edge] = Field(default_factory=list)
    removed: List[Edge] = Field(default_factory=list)


class DiffSummary(BaseModel):
    """Change counts of a diff."""

    total_changes: int = 0
    nodes_added: int = 0
    nodes_removed: int = 0
    nodes_modified: int = 0
    edges_added: int = 0
    edges_removed: int = 0


class Diff(BaseModel):
    """Structural difference between two workflow specs."""

    summary: DiffSummary = Field(default_factory=DiffSummary)
    nodes: NodeChanges = Field(default_factory=NodeChanges)
    edges: EdgeChanges = Field(default_factory=EdgeChanges)

    @property
    def is_empty(self) -> bool:
        return self.summary.total_changes == 0

    def added_node_ids(self) -> List[str]:
        return [node.id for node in self.nodes.added]

    def removed_node_ids(self) -> List[str]:
        return [node.id for node in self.nodes.removed]

    def modified_node_ids(self) -> List[str]:
        return [modification.id for modification in self.nodes.modified]

    def has_breaking_changes(self) -> bool:
        """Check if diff contains breaking changes."""
        # Breaking changes include removing nodes or changing node types
        if self.nodes.removed:
            return True
        return any("type" in m.changed_fields for m in self.nodes.modified)


class VersionSummary(BaseModel):
    """Lightweight description of a version for comparisons."""

    id: str
    version: str
    version_number: int
    created_at: datetime
    created_by: str
    change_summary: str = ""

    @classmethod
    def from_version(cls, version: Version) -> "VersionSummary":
        return cls(
            id=version.id,
            version=version.version,
            version_number=version.version_number,
            created_at=version.created_at,
            created_by=version.created_by,
            change_summary=version.change_summary,
        )


class VersionComparison(BaseModel):
    """Result of comparing two workflow versions."""

    version_a: VersionSummary = Field(..., description="Older side of the comparison")
    version_b: VersionSummary = Field(..., description="Newer side of the comparison")
    diff: Diff = Field(..., description="Calculated diff")
    is_compatible: bool = Field(..., description="Whether the change is non-breaking")


class MergeResult(BaseModel):
    """Outcome of merging one branch into another."""

    status: MergeStatus
    conflicts: List[str] = Field(
        default_factory=list, description="Conflicting node IDs, plus \"collaboration_strategy\" when it diverged"
    )
    merged_version: Optional[Version] = Field(default=None, description="New target head")
    conflicts_resolved: int = Field(default=0, description="Conflicts settled by strategy or resolution")


class HistoryEntry(BaseModel):
    """Audit entry for a version-control action."""

    id: str = Field(..., description="Entry ID")
    workflow_id: str = Field(..., description="Workflow ID")
    action: HistoryAction = Field(..., description="Action performed")
    actor: str = Field(..., description="Who performed the action")
    timestamp: datetime = Field(..., description="When action occurred")
    summary: str = Field(default="", description="Summary of changes")
    version_id: Optional[str] = Field(default=None, description="Related version ID")
    branch_id: Optional[str] = Field(default=None, description="Related branch ID")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata")


class HistoryFilter(BaseModel):
    """Filter for workflow history queries."""

    action: Optional[HistoryAction] = Field(default=None, description="Filter by action")
    actor: Optional[str] = Field(default=None, description="Filter by actor")
    branch_id: Optional[str] = Field(default=None, description="Filter by branch")
    date_from: Optional[datetime] = Field(default=None, description="Filter from date")
    date_to: Optional[datetime] = Field(default=None, description="Filter to date")
    limit: Optional[int] = Field(default=None, ge=1, description="Maximum results")
    offset: int = Field(default=0, ge=0, description="Results offset")

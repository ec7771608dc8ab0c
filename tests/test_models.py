"""Test workflow version control models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from archonflow.history import (
    Branch,
    BranchStatus,
    ChangeType,
    Diff,
    Edge,
    InvalidChangeType,
    NodeType,
    Version,
    WorkflowSpec,
    bump_version,
)
from archonflow.history.models import parse_change_type


@pytest.fixture
def sample_version(sample_spec_data):
    """Create sample workflow version for testing."""
    return Version(
        id="v-1",
        workflow_id="w1",
        branch_id="b-main",
        version="1.0.0",
        version_number=1,
        spec=WorkflowSpec.model_validate(sample_spec_data),
        change_summary="Initial workflow creation",
        change_type=ChangeType.MAJOR,
        created_by="alice@example.com",
        created_at=datetime.now(timezone.utc),
    )


@pytest.mark.unit
class TestWorkflowSpec:
    """Test WorkflowSpec validation."""

    def test_spec_creation(self, sample_spec_data):
        """Test building a spec from raw data."""
        spec = WorkflowSpec.model_validate(sample_spec_data)

        assert [node.id for node in spec.nodes] == ["trigger_1", "agent_1", "email_1"]
        assert spec.nodes[0].type == NodeType.TRIGGER
        assert spec.nodes[1].config["temperature"] == 0.2
        assert spec.nodes[0].position.x == 100
        assert spec.collaboration_strategy == "sequential"
        assert set(spec.edge_map()) == {("trigger_1", "agent_1"), ("agent_1", "email_1")}

    def test_node_defaults(self):
        """Test optional node fields."""
        spec = WorkflowSpec.model_validate({"nodes": [{"id": "trigger_1", "type": "trigger"}]})
        node = spec.nodes[0]

        assert node.label == ""
        assert node.config == {}
        assert node.position is None
        assert spec.edges == []

    def test_unknown_node_type(self):
        """Test node types outside the closed set are rejected."""
        with pytest.raises(ValidationError):
            WorkflowSpec.model_validate({"nodes": [{"id": "n1", "type": "action.http"}]})

    def test_duplicate_node_ids(self, sample_spec_data):
        """Test duplicate node ids are rejected."""
        sample_spec_data["nodes"].append({"id": "agent_1", "type": "tool"})

        with pytest.raises(ValidationError, match="Duplicate node id"):
            WorkflowSpec.model_validate(sample_spec_data)

    def test_dangling_edge(self, sample_spec_data):
        """Test edges must reference existing nodes."""
        sample_spec_data["edges"].append({"source": "email_1", "target": "ghost"})

        with pytest.raises(ValidationError, match="unknown node 'ghost'"):
            WorkflowSpec.model_validate(sample_spec_data)

    def test_duplicate_edge(self, sample_spec_data):
        """Test the same source/target pair may appear once."""
        sample_spec_data["edges"].append({"source": "trigger_1", "target": "agent_1", "label": "again"})

        with pytest.raises(ValidationError, match="Duplicate edge"):
            WorkflowSpec.model_validate(sample_spec_data)

    def test_edge_from_to_aliases(self):
        """Test edges written with from/to keys."""
        edge = Edge.model_validate({"from": "a", "to": "b", "condition": "ok"})

        assert edge.source == "a"
        assert edge.target == "b"
        assert edge.key == ("a", "b")
        assert edge.model_dump()["source"] == "a"


@pytest.mark.unit
class TestSemanticVersions:
    """Test semantic version increments."""

    def test_bump_version(self):
        assert bump_version("1.2.3", "major") == "2.0.0"
        assert bump_version("1.2.3", "minor") == "1.3.0"
        assert bump_version("1.2.3", "patch") == "1.2.4"
        assert bump_version("1.9.9", ChangeType.PATCH) == "1.9.10"

    def test_invalid_change_type(self):
        """Test change types are never defaulted."""
        for value in ("", None, "PATCH", "hotfix"):
            with pytest.raises(InvalidChangeType):
                bump_version("1.0.0", value)

        with pytest.raises(InvalidChangeType) as exc_info:
            parse_change_type("breaking")
        assert exc_info.value.change_type == "breaking"

    def test_invalid_version_string(self):
        with pytest.raises(ValueError):
            bump_version("1.0", "patch")


@pytest.mark.unit
class TestVersion:
    """Test Version model."""

    def test_version_creation(self, sample_version):
        """Test creating workflow version."""
        assert sample_version.version == "1.0.0"
        assert sample_version.tags == []
        assert sample_version.is_release is False
        assert sample_version.is_initial_version()
        assert sample_version.get_version_parts() == (1, 0, 0)
        assert sample_version.increment_version("minor") == "1.1.0"

    def test_version_is_immutable(self, sample_version):
        """Test versions cannot be changed after creation."""
        with pytest.raises(ValidationError):
            sample_version.change_summary = "rewritten"

    def test_version_serialization(self, sample_version):
        """Test JSON round trip through the store representation."""
        data = sample_version.model_dump(mode="json")

        assert data["change_type"] == "major"
        assert data["spec"]["nodes"][0]["type"] == "trigger"

        restored = Version.model_validate(data)
        assert restored == sample_version

    def test_version_number_validation(self, sample_version):
        """Test version string validation."""
        data = sample_version.model_dump()
        for value in ("1.0", "1", "v1.0.0", "1.0.0-alpha", ""):
            data["version"] = value
            with pytest.raises(ValueError):
                Version.model_validate(data)

        data["version"] = "1.0.0"
        data["version_number"] = 0
        with pytest.raises(ValueError):
            Version.model_validate(data)


@pytest.mark.unit
class TestBranch:
    """Test Branch model."""

    def _branch(self, name):
        return Branch(
            id="b-1",
            workflow_id="w1",
            name=name,
            base_version_id="v-1",
            head_version_id="v-1",
            created_by="alice@example.com",
            created_at=datetime.now(timezone.utc),
        )

    def test_branch_creation(self):
        """Test creating version branch."""
        branch = self._branch("feature/new-agent")

        assert branch.status == BranchStatus.ACTIVE
        assert branch.is_active
        assert branch.is_default is False
        assert branch.merged_into is None

    def test_branch_name_validation(self):
        """Test branch name validation."""
        for name in ("main", "feature/new-node", "bugfix-123", "release/1.0.0"):
            assert self._branch(name).name == name

        for name in ("", "  ", "/invalid", "invalid/", "with spaces", "invalid@name"):
            with pytest.raises(ValueError):
                self._branch(name)


@pytest.mark.unit
class TestDiffModel:
    """Test Diff helpers."""

    def test_empty_diff(self):
        diff = Diff()

        assert diff.is_empty
        assert diff.added_node_ids() == []
        assert not diff.has_breaking_changes()

"""Test three-way merging of workflow specs."""

import pytest

from archonflow.history import MergeStrategy, Node, WorkflowSpec, three_way_merge


@pytest.fixture
def ancestor(spec_factory):
    return spec_factory(
        "trigger_1", "n1", "n2",
        edges=[("trigger_1", "n1"), ("n1", "n2")],
        types={"trigger_1": "trigger"},
    )


def relabel(spec, node_id, label):
    """Copy of a spec with one node relabelled."""
    data = spec.model_dump()
    for node in data["nodes"]:
        if node["id"] == node_id:
            node["label"] = label
    return WorkflowSpec.model_validate(data)


def without(spec, node_id):
    """Copy of a spec without a node and its edges."""
    data = spec.model_dump()
    data["nodes"] = [n for n in data["nodes"] if n["id"] != node_id]
    data["edges"] = [e for e in data["edges"] if node_id not in (e["source"], e["target"])]
    return WorkflowSpec.model_validate(data)


def with_node(spec, node_id, connect_from=None, **fields):
    """Copy of a spec with an extra agent node."""
    data = spec.model_dump()
    data["nodes"].append({"id": node_id, "type": "agent", "label": node_id, **fields})
    if connect_from:
        data["edges"].append({"source": connect_from, "target": node_id})
    return WorkflowSpec.model_validate(data)


@pytest.mark.unit
class TestCleanMerges:
    """Merges without conflicts."""

    def test_fast_forward(self, ancestor):
        """Target unchanged: the result equals the source."""
        source = with_node(relabel(ancestor, "n1", "Planner"), "n3", connect_from="n2")

        plan = three_way_merge(ancestor, source, ancestor)

        assert not plan.has_conflicts
        assert plan.spec.node_map() == source.node_map()
        assert set(plan.spec.edge_map()) == set(source.edge_map())
        assert plan.source_diff.added_node_ids() == ["n3"]

    def test_nothing_to_merge(self, ancestor):
        target = relabel(ancestor, "n2", "Reviewer")

        plan = three_way_merge(ancestor, ancestor, target)

        assert plan.spec == target
        assert plan.source_diff.is_empty

    def test_disjoint_changes_are_combined(self, ancestor):
        source = with_node(relabel(ancestor, "n1", "Planner"), "n3", connect_from="n1")
        target = with_node(relabel(ancestor, "n2", "Reviewer"), "n4", connect_from="n2")

        plan = three_way_merge(ancestor, source, target)

        nodes = plan.spec.node_map()
        assert nodes["n1"].label == "Planner"
        assert nodes["n2"].label == "Reviewer"
        assert [node.id for node in plan.spec.nodes] == ["trigger_1", "n1", "n2", "n4", "n3"]
        assert set(plan.spec.edge_map()) == {
            ("trigger_1", "n1"), ("n1", "n2"), ("n2", "n4"), ("n1", "n3"),
        }
        assert plan.conflicts_resolved == 0

    def test_source_removal_applied(self, ancestor):
        source = without(ancestor, "n2")
        target = relabel(ancestor, "n1", "Planner")

        plan = three_way_merge(ancestor, source, target)

        assert set(plan.spec.node_map()) == {"trigger_1", "n1"}
        assert plan.spec.node_map()["n1"].label == "Planner"
        assert set(plan.spec.edge_map()) == {("trigger_1", "n1")}

    def test_identical_changes_do_not_conflict(self, ancestor):
        source = with_node(relabel(ancestor, "n1", "Planner"), "n3")
        target = with_node(relabel(ancestor, "n1", "Planner"), "n3")

        plan = three_way_merge(ancestor, source, target)

        assert not plan.has_conflicts
        assert plan.spec.node_map()["n1"].label == "Planner"
        assert [node.id for node in plan.spec.nodes].count("n3") == 1

    def test_result_is_independent_copy(self, ancestor):
        source = with_node(ancestor, "n3", config={"retries": [1, 2]})

        plan = three_way_merge(ancestor, source, ancestor)
        plan.spec.node_map()["n3"].config["retries"].append(3)

        assert source.node_map()["n3"].config["retries"] == [1, 2]


@pytest.mark.unit
class TestConflicts:
    """Divergent edits to the same node."""

    def test_divergent_labels(self, ancestor):
        source = relabel(ancestor, "n1", "Planner")
        target = relabel(ancestor, "n1", "Researcher")

        plan = three_way_merge(ancestor, source, target)

        assert plan.has_conflicts
        assert plan.conflicts == ["n1"]
        assert plan.spec is None

    def test_modified_versus_removed(self, ancestor):
        source = relabel(ancestor, "n2", "Reviewer")
        target = without(ancestor, "n2")

        plan = three_way_merge(ancestor, source, target)

        assert plan.conflicts == ["n2"]

    def test_added_on_both_sides_differently(self, ancestor):
        source = with_node(ancestor, "n3", config={"model": "a"})
        target = with_node(ancestor, "n3", config={"model": "b"})

        assert three_way_merge(ancestor, source, target).conflicts == ["n3"]

    def test_edge_to_removed_node(self, ancestor):
        """An edge added on one side towards a node the other side removed."""
        source = with_node(ancestor, "n3")
        source = WorkflowSpec.model_validate({
            **source.model_dump(),
            "edges": source.model_dump()["edges"] + [{"source": "n3", "target": "n2"}],
        })
        target = without(ancestor, "n2")

        plan = three_way_merge(ancestor, source, target)

        assert plan.conflicts == ["n2"]

    def test_conflicts_are_sorted(self, ancestor):
        source = relabel(relabel(ancestor, "n2", "B2"), "n1", "B1")
        target = relabel(relabel(ancestor, "n1", "C1"), "n2", "C2")

        assert three_way_merge(ancestor, source, target).conflicts == ["n1", "n2"]


@pytest.mark.unit
class TestResolution:
    """Strategies and explicit resolutions."""

    def test_ours_keeps_target(self, ancestor):
        source = with_node(relabel(ancestor, "n1", "Planner"), "n3")
        target = relabel(ancestor, "n1", "Researcher")

        plan = three_way_merge(ancestor, source, target, strategy=MergeStrategy.OURS)

        assert plan.spec.node_map()["n1"].label == "Researcher"
        assert "n3" in plan.spec.node_map()
        assert plan.conflicts_resolved == 1

    def test_theirs_takes_source(self, ancestor):
        source = relabel(ancestor, "n1", "Planner")
        target = relabel(ancestor, "n1", "Researcher")

        plan = three_way_merge(ancestor, source, target, strategy=MergeStrategy.THEIRS)

        assert plan.spec.node_map()["n1"].label == "Planner"
        assert plan.conflicts_resolved == 1

    def test_dangling_edge_strategies(self, ancestor):
        source = WorkflowSpec.model_validate({
            **ancestor.model_dump(),
            "edges": ancestor.model_dump()["edges"] + [{"source": "trigger_1", "target": "n2"}],
        })
        target = without(ancestor, "n2")

        ours = three_way_merge(ancestor, source, target, strategy=MergeStrategy.OURS)
        assert "n2" not in ours.spec.node_map()
        assert set(ours.spec.edge_map()) == {("trigger_1", "n1")}

        theirs = three_way_merge(ancestor, source, target, strategy=MergeStrategy.THEIRS)
        assert "n2" in theirs.spec.node_map()
        assert ("trigger_1", "n2") in theirs.spec.edge_map()

    def test_explicit_resolution(self, ancestor):
        source = relabel(ancestor, "n1", "Planner")
        target = relabel(ancestor, "n1", "Researcher")
        resolved = {"id": "n1", "type": "agent", "label": "Planner and researcher"}

        plan = three_way_merge(ancestor, source, target, resolutions={"n1": resolved})

        assert plan.spec.node_map()["n1"].label == "Planner and researcher"
        assert plan.conflicts_resolved == 1

    def test_resolution_can_drop_node(self, ancestor):
        source = relabel(ancestor, "n2", "Reviewer")
        target = relabel(ancestor, "n2", "Editor")

        plan = three_way_merge(ancestor, source, target, resolutions={"n2": None})

        assert "n2" not in plan.spec.node_map()
        assert ("n1", "n2") not in plan.spec.edge_map()
        assert plan.conflicts_resolved == 1

    def test_partial_resolution_still_conflicts(self, ancestor):
        source = relabel(relabel(ancestor, "n2", "B2"), "n1", "B1")
        target = relabel(relabel(ancestor, "n1", "C1"), "n2", "C2")

        plan = three_way_merge(
            ancestor, source, target, resolutions={"n1": Node(id="n1", type="agent", label="Both")}
        )

        assert plan.conflicts == ["n2"]
        assert plan.conflicts_resolved == 1

    def test_resolution_with_wrong_id(self, ancestor):
        source = relabel(ancestor, "n1", "Planner")
        target = relabel(ancestor, "n1", "Researcher")

        with pytest.raises(ValueError):
            three_way_merge(ancestor, source, target, resolutions={"n1": {"id": "n9", "type": "agent"}})


@pytest.mark.unit
class TestCollaborationStrategy:
    """Merging the spec-level collaboration strategy."""

    def _with_strategy(self, spec, value):
        return spec.model_copy(update={"collaboration_strategy": value})

    def test_source_change_applied(self, ancestor):
        source = self._with_strategy(ancestor, "parallel")

        plan = three_way_merge(ancestor, source, ancestor)

        assert plan.spec.collaboration_strategy == "parallel"

    def test_target_change_kept(self, ancestor):
        target = self._with_strategy(ancestor, "parallel")

        plan = three_way_merge(ancestor, ancestor, target)

        assert plan.spec.collaboration_strategy == "parallel"

    def test_same_change_on_both_sides(self, ancestor):
        source = self._with_strategy(ancestor, "parallel")
        target = self._with_strategy(ancestor, "parallel")

        plan = three_way_merge(ancestor, source, target)

        assert not plan.has_conflicts
        assert plan.spec.collaboration_strategy == "parallel"

    def test_divergent_change_conflicts(self, ancestor):
        source = self._with_strategy(ancestor, "parallel")
        target = self._with_strategy(ancestor, "hierarchical")

        plan = three_way_merge(ancestor, source, target)

        assert plan.has_conflicts
        assert plan.conflicts == ["collaboration_strategy"]
        assert plan.spec is None

    def test_divergent_change_with_node_conflict(self, ancestor):
        source = relabel(self._with_strategy(ancestor, "parallel"), "n1", "Planner")
        target = relabel(self._with_strategy(ancestor, "hierarchical"), "n1", "Researcher")

        plan = three_way_merge(ancestor, source, target)

        assert plan.conflicts == ["collaboration_strategy", "n1"]

    def test_divergent_change_strategies(self, ancestor):
        source = self._with_strategy(ancestor, "parallel")
        target = self._with_strategy(ancestor, "hierarchical")

        ours = three_way_merge(ancestor, source, target, strategy=MergeStrategy.OURS)
        assert ours.spec.collaboration_strategy == "hierarchical"
        assert ours.conflicts_resolved == 1

        theirs = three_way_merge(ancestor, source, target, strategy=MergeStrategy.THEIRS)
        assert theirs.spec.collaboration_strategy == "parallel"

    def test_divergent_change_resolved(self, ancestor):
        source = self._with_strategy(ancestor, "parallel")
        target = self._with_strategy(ancestor, "hierarchical")

        plan = three_way_merge(
            ancestor, source, target, resolutions={"collaboration_strategy": "parallel"}
        )

        assert not plan.has_conflicts
        assert plan.spec.collaboration_strategy == "parallel"
        assert plan.conflicts_resolved == 1

"""Three-way merge of workflow specs."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from .differ import compare_nodes, diff_specs
from .exceptions import SpecIntegrityError
from .models import Diff, Edge, MergeStrategy, Node, WorkflowSpec

NodeResolution = Optional[Union[Node, Dict[str, Any], str]]

# Conflict key for divergent spec-level collaboration strategies
COLLABORATION_STRATEGY = "collaboration_strategy"


@dataclass
class MergePlan:
    """Outcome of planning a merge; ``spec`` is set only when there are no conflicts."""

    spec: Optional[WorkflowSpec] = None
    conflicts: List[str] = field(default_factory=list)
    conflicts_resolved: int = 0
    source_diff: Optional[Diff] = None

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


def _touched(diff: Diff) -> Set[str]:
    return set(diff.added_node_ids()) | set(diff.removed_node_ids()) | set(diff.modified_node_ids())


def _same_state(a: Optional[Node], b: Optional[Node], compare_positions: bool) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return not compare_nodes(a, b, compare_positions)


def _coerce_resolution(node_id: str, value: NodeResolution) -> Optional[Node]:
    if value is None:
        return None
    node = value if isinstance(value, Node) else Node.model_validate(value)
    if node.id != node_id:
        raise ValueError(f"Resolution for node '{node_id}' carries id '{node.id}'")
    return node


class _Resolver:
    """Picks a side for a contested node or spec property from strategy and explicit resolutions."""

    def __init__(self, strategy: MergeStrategy, resolutions: Mapping[str, NodeResolution]):
        self.strategy = strategy
        self.resolutions = resolutions
        self.settled: Set[str] = set()

    @property
    def resolved(self) -> int:
        return len(self.settled)

    def resolve(self, key: str, ours: Any, theirs: Any, coerce: Optional[Callable] = None) -> Tuple[bool, Any]:
        if key in self.resolutions:
            self.settled.add(key)
            value = self.resolutions[key]
            return True, coerce(key, value) if coerce else value
        if self.strategy == MergeStrategy.OURS:
            self.settled.add(key)
            return True, ours
        if self.strategy == MergeStrategy.THEIRS:
            self.settled.add(key)
            return True, theirs
        return False, None

    def resolve_node(self, node_id: str, ours: Optional[Node], theirs: Optional[Node]) -> Tuple[bool, Optional[Node]]:
        return self.resolve(node_id, ours, theirs, coerce=_coerce_resolution)


def three_way_merge(
    base: WorkflowSpec,
    source: WorkflowSpec,
    target: WorkflowSpec,
    strategy: MergeStrategy = MergeStrategy.AUTO,
    resolutions: Optional[Mapping[str, NodeResolution]] = None,
    compare_positions: bool = False,
) -> MergePlan:
    """Apply the changes ``source`` made since ``base`` on top of ``target``.

    A node is contested when both sides changed it since ``base`` and ended
    in different states. Edges are merged as ``(source, target)`` pairs; an
    edge left pointing at a node the other side removed makes that node
    contested too. Contested nodes are settled by an explicit resolution,
    then by the ``ours``/``theirs`` strategy; under ``auto`` they are
    reported as conflicts and no spec is produced.

    The spec-level ``collaboration_strategy`` follows the same rules: if both
    sides changed it to different values it is reported under the
    ``"collaboration_strategy"`` conflict key, which ``resolutions`` may
    settle with the value to keep.
    """
    resolutions = resolutions or {}
    source_diff = diff_specs(base, source, compare_positions)
    target_diff = diff_specs(base, target, compare_positions)

    source_nodes = source.node_map()
    target_nodes = target.node_map()
    resolver = _Resolver(strategy, resolutions)
    unresolved: Set[str] = set()

    contested = {
        node_id
        for node_id in _touched(source_diff) & _touched(target_diff)
        if not _same_state(source_nodes.get(node_id), target_nodes.get(node_id), compare_positions)
    }

    # Target order first, then nodes new on the source side in source order
    merged: Dict[str, Node] = dict(target_nodes)
    source_order = [node.id for node in source.nodes] + source_diff.removed_node_ids()

    def place(node_id: str, node: Optional[Node]) -> None:
        if node is None:
            merged.pop(node_id, None)
        else:
            merged[node_id] = node

    source_touched = _touched(source_diff)
    for node_id in source_order:
        if node_id not in source_touched or node_id in contested:
            continue
        place(node_id, source_nodes.get(node_id))

    for node_id in sorted(contested):
        decided, node = resolver.resolve_node(node_id, target_nodes.get(node_id), source_nodes.get(node_id))
        if decided:
            place(node_id, node)
        else:
            unresolved.add(node_id)

    edges: Dict[Tuple[str, str], Edge] = target.edge_map()
    for edge in source_diff.edges.added:
        edges.setdefault(edge.key, edge)
    for edge in source_diff.edges.removed:
        edges.pop(edge.key, None)

    dangling = sorted(
        {endpoint for key in edges for endpoint in key if endpoint not in merged} - unresolved
    )
    for node_id in dangling:
        decided, node = resolver.resolve_node(node_id, target_nodes.get(node_id), source_nodes.get(node_id))
        if decided and node is not None:
            merged[node_id] = node
        elif decided:
            edges = {key: edge for key, edge in edges.items() if node_id not in key}
        else:
            unresolved.add(node_id)

    collaboration_strategy = target.collaboration_strategy
    if source.collaboration_strategy != base.collaboration_strategy:
        if target.collaboration_strategy in (base.collaboration_strategy, source.collaboration_strategy):
            collaboration_strategy = source.collaboration_strategy
        else:
            decided, value = resolver.resolve(
                COLLABORATION_STRATEGY, target.collaboration_strategy, source.collaboration_strategy
            )
            if decided:
                collaboration_strategy = value
            else:
                unresolved.add(COLLABORATION_STRATEGY)

    if unresolved:
        return MergePlan(
            conflicts=sorted(unresolved),
            conflicts_resolved=resolver.resolved,
            source_diff=source_diff,
        )

    try:
        spec = WorkflowSpec(
            nodes=[node.model_copy(deep=True) for node in merged.values()],
            edges=[edge.model_copy(deep=True) for edge in edges.values()],
            collaboration_strategy=collaboration_strategy,
        )
    except ValidationError as e:
        raise SpecIntegrityError(f"Merged spec is invalid: {e}") from e

    return MergePlan(
        spec=spec,
        conflicts_resolved=resolver.resolved,
        source_diff=source_diff,
    )

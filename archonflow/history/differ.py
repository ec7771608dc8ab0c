"""Structural diff between two workflow specs.

Nodes are matched by ``id`` and edges by their ``(source, target)`` pair, so
the result does not depend on the order of nodes or edges inside either
spec. Every output list is sorted to keep the result deterministic.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from archonflow.config import settings

from .exceptions import SpecIntegrityError
from .models import (
    Diff,
    DiffSummary,
    EdgeChanges,
    FieldChange,
    Node,
    NodeChanges,
    NodeModification,
    WorkflowSpec,
)

SpecLike = Union[WorkflowSpec, Dict[str, Any]]

COMPARED_FIELDS = ("type", "label", "config")


def _as_spec(spec: SpecLike) -> WorkflowSpec:
    if isinstance(spec, WorkflowSpec):
        return spec
    try:
        return WorkflowSpec.model_validate(spec)
    except ValidationError as e:
        raise SpecIntegrityError(f"Invalid workflow spec: {e}") from e


def _same_value(a: Any, b: Any) -> bool:
    """Deep equality over JSON values.

    Numbers compare by value (``1`` equals ``1.0``) but booleans only equal
    booleans.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_same_value(a[key], b[key]) for key in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_same_value(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        return False
    return a == b


def _field_value(node: Node, field: str) -> Any:
    value = getattr(node, field)
    if field == "type":
        return value.value
    if field == "position":
        return value.model_dump() if value is not None else None
    return value


def compare_nodes(before: Node, after: Node, compare_positions: bool = False) -> List[FieldChange]:
    """List the field-level differences between two versions of a node."""
    fields = COMPARED_FIELDS + (("position",) if compare_positions else ())
    changes = []
    for field in fields:
        old_value = _field_value(before, field)
        new_value = _field_value(after, field)
        if not _same_value(old_value, new_value):
            changes.append(FieldChange(field=field, before=old_value, after=new_value))
    return changes


def diff_specs(spec_a: SpecLike, spec_b: SpecLike, compare_positions: bool = False) -> Diff:
    """Compute the changes that turn ``spec_a`` into ``spec_b``."""
    spec_a = _as_spec(spec_a)
    spec_b = _as_spec(spec_b)

    nodes_a = spec_a.node_map()
    nodes_b = spec_b.node_map()

    added = [nodes_b[node_id] for node_id in sorted(nodes_b.keys() - nodes_a.keys())]
    removed = [nodes_a[node_id] for node_id in sorted(nodes_a.keys() - nodes_b.keys())]

    modified = []
    for node_id in sorted(nodes_a.keys() & nodes_b.keys()):
        changes = compare_nodes(nodes_a[node_id], nodes_b[node_id], compare_positions)
        if changes:
            modified.append(
                NodeModification(
                    id=node_id,
                    before=nodes_a[node_id],
                    after=nodes_b[node_id],
                    changes=changes,
                )
            )

    edges_a = spec_a.edge_map()
    edges_b = spec_b.edge_map()
    edges_added = [edges_b[key] for key in sorted(edges_b.keys() - edges_a.keys())]
    edges_removed = [edges_a[key] for key in sorted(edges_a.keys() - edges_b.keys())]

    summary = DiffSummary(
        nodes_added=len(added),
        nodes_removed=len(removed),
        nodes_modified=len(modified),
        edges_added=len(edges_added),
        edges_removed=len(edges_removed),
        total_changes=len(added) + len(removed) + len(modified) + len(edges_added) + len(edges_removed),
    )

    return Diff(
        summary=summary,
        nodes=NodeChanges(added=added, removed=removed, modified=modified),
        edges=EdgeChanges(added=edges_added, removed=edges_removed),
    )


class SpecDiffer:
    """Spec differ carrying comparison options."""

    def __init__(self, compare_positions: Optional[bool] = None):
        if compare_positions is None:
            compare_positions = settings.diff_compare_positions
        self.compare_positions = compare_positions

    def diff(self, spec_a: SpecLike, spec_b: SpecLike) -> Diff:
        return diff_specs(spec_a, spec_b, compare_positions=self.compare_positions)

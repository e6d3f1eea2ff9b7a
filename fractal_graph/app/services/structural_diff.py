from __future__ import annotations

from collections.abc import Iterable, Sequence

from fractal_graph.app.models.graph import (
    SENTINEL_IDS,
    BindingSlot,
    Edge,
    InputHandle,
    NodeCondition,
    PipelineNode,
)

WiringKey = tuple[str, str, InputHandle | None]


def is_structurally_equal(a: Sequence[PipelineNode], b: Sequence[PipelineNode]) -> bool:
    """Compare two pipelines on the fields that change shader text.

    Numeric ``params`` values and free text are ignored: a slider change is a
    uniform update, never a recompile.
    """
    if len(a) != len(b):
        return False
    for node_a, node_b in zip(a, b):
        if node_a.id != node_b.id or node_a.type != node_b.type or node_a.enabled != node_b.enabled:
            return False
        if _defined_bindings(node_a) != _defined_bindings(node_b):
            return False
        if _condition_key(node_a.condition) != _condition_key(node_b.condition):
            return False
    return True


def is_exactly_equal(a: Sequence[PipelineNode], b: Sequence[PipelineNode]) -> bool:
    if len(a) != len(b):
        return False
    return [node.model_dump(mode="json") for node in a] == [node.model_dump(mode="json") for node in b]


def is_params_equal(a: Sequence[PipelineNode], b: Sequence[PipelineNode]) -> bool:
    return {node.id: node.params for node in a} == {node.id: node.params for node in b}


def wiring_key(edges: Iterable[Edge], node_ids: Iterable[str] | None = None) -> frozenset[WiringKey]:
    """Canonical edge set, independent of edge ids and insertion order."""
    known = set(node_ids) | SENTINEL_IDS if node_ids is not None else None
    return frozenset(
        (edge.source, edge.target, edge.target_handle)
        for edge in edges
        if known is None or (edge.source in known and edge.target in known)
    )


def is_wiring_equal(a: Iterable[Edge], b: Iterable[Edge]) -> bool:
    return wiring_key(a) == wiring_key(b)


def _defined_bindings(node: PipelineNode) -> dict[str, BindingSlot]:
    return {key: slot for key, slot in node.bindings.items() if slot is not None}


def _condition_key(condition: NodeCondition | None) -> tuple[bool, int, int]:
    if condition is None or not condition.active:
        return (False, 0, 0)
    return (True, condition.modulus, condition.remainder)

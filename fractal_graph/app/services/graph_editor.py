from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import uuid4

from fractal_graph.app.models.graph import (
    ROOT_END_ID,
    ROOT_START_ID,
    SENTINEL_IDS,
    BindingSlot,
    Edge,
    FractalGraph,
    GraphNode,
    InputHandle,
    NodePosition,
    edge_id_for,
)
from fractal_graph.app.models.session import UpdateNodeRequest
from fractal_graph.app.services import bindings
from fractal_graph.app.services.compile_errors import GraphEditError
from fractal_graph.app.services.cycle_guard import would_create_cycle
from fractal_graph.app.services.linearizer import CHAIN_POSITION_SPACING, CHAIN_POSITION_X, CHAIN_POSITION_Y
from fractal_graph.app.services.node_registry import NodeRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConnectResult:
    graph: FractalGraph
    accepted: bool
    edge: Edge | None = None
    warning: str | None = None


class GraphEditor:
    """Applies user edits to a graph, returning a new graph for every change.

    Rejected edits raise ``GraphEditError`` and leave the input untouched; a
    connection that would close a cycle is not an error but comes back with
    ``accepted=False``.
    """

    def __init__(self, registry: NodeRegistry) -> None:
        self._registry = registry

    def add_node(
        self,
        graph: FractalGraph,
        node_type: str,
        node_id: str | None = None,
        position: NodePosition | None = None,
        params: dict[str, float] | None = None,
        text: str | None = None,
    ) -> tuple[FractalGraph, GraphNode]:
        definition = self._registry.get(node_type)
        if not definition:
            raise GraphEditError(f"Unknown node type '{node_type}'", status_code=422)

        if node_id is None:
            node_id = f"{node_type.lower()}-{uuid4().hex[:8]}"
        if node_id in SENTINEL_IDS:
            raise GraphEditError(f"Node id '{node_id}' is reserved", status_code=422)
        if graph.find_node(node_id) is not None:
            raise GraphEditError(f"Node '{node_id}' already exists", status_code=409)

        merged_params = definition.default_params()
        for input_id, value in (params or {}).items():
            if definition.find_input(input_id) is None:
                raise GraphEditError(f"Node type '{node_type}' has no input '{input_id}'", status_code=422)
            merged_params[input_id] = value

        node = GraphNode(
            id=node_id,
            type=node_type,
            params=merged_params,
            text=text,
            position=position
            or NodePosition(x=CHAIN_POSITION_X, y=CHAIN_POSITION_Y + len(graph.nodes) * CHAIN_POSITION_SPACING),
        )
        updated = graph.model_copy(deep=True)
        updated.nodes.append(node)
        return self._validated(updated), node

    def remove_node(self, graph: FractalGraph, node_id: str) -> FractalGraph:
        if node_id in SENTINEL_IDS:
            raise GraphEditError(f"Sentinel node '{node_id}' cannot be deleted", status_code=422)
        self._require_node(graph, node_id)

        updated = graph.model_copy(deep=True)
        updated.nodes = [node for node in updated.nodes if node.id != node_id]
        updated.edges = [edge for edge in updated.edges if node_id not in (edge.source, edge.target)]
        return updated

    def connect(
        self,
        graph: FractalGraph,
        source: str,
        target: str,
        target_handle: InputHandle | None = None,
        source_handle: InputHandle | None = None,
    ) -> ConnectResult:
        if source == ROOT_END_ID:
            raise GraphEditError(f"'{ROOT_END_ID}' cannot be an edge source", status_code=422)
        if target == ROOT_START_ID:
            raise GraphEditError(f"'{ROOT_START_ID}' cannot be an edge target", status_code=422)
        if source != ROOT_START_ID:
            self._require_node(graph, source)
        if target != ROOT_END_ID:
            self._require_node(graph, target)

        target_handle = self._normalize_target_handle(graph, target, target_handle)
        candidate = Edge(
            id=edge_id_for(source, target, target_handle, taken={edge.id for edge in graph.edges}),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )

        for edge in graph.edges:
            if edge.source == source and edge.target == target and edge.target_handle == target_handle:
                raise GraphEditError(f"Edge '{edge.id}' already exists", status_code=409)
            if edge.target == target and edge.target_handle == target_handle:
                handle_label = target_handle.value if target_handle else "input"
                raise GraphEditError(
                    f"Input '{handle_label}' of node '{target}' is already connected (edge '{edge.id}')",
                    status_code=409,
                )

        if would_create_cycle(graph.nodes, graph.edges, candidate):
            warning = f"Connecting '{source}' to '{target}' would create a cycle; edge rejected."
            logger.warning("Rejected edge %s -> %s: would create a cycle", source, target)
            return ConnectResult(graph=graph, accepted=False, warning=warning)

        updated = graph.model_copy(deep=True)
        updated.edges.append(candidate)
        return ConnectResult(graph=self._validated(updated), accepted=True, edge=candidate)

    def disconnect(self, graph: FractalGraph, edge_id: str) -> FractalGraph:
        if not any(edge.id == edge_id for edge in graph.edges):
            raise GraphEditError(f"Edge '{edge_id}' not found", status_code=404)
        updated = graph.model_copy(deep=True)
        updated.edges = [edge for edge in updated.edges if edge.id != edge_id]
        return updated

    def update_node(self, graph: FractalGraph, node_id: str, request: UpdateNodeRequest) -> FractalGraph:
        self._require_node(graph, node_id)
        updated = graph.model_copy(deep=True)
        node = self._require_node(updated, node_id)
        definition = self._registry.get(node.type)

        if request.params is not None:
            for input_id, value in request.params.items():
                if definition is not None and definition.find_input(input_id) is None:
                    raise GraphEditError(f"Node type '{node.type}' has no input '{input_id}'", status_code=422)
                node.params[input_id] = value
        if request.enabled is not None:
            node.enabled = request.enabled
        if request.clear_condition:
            node.condition = None
        elif request.condition is not None:
            node.condition = request.condition
        if request.position is not None:
            node.position = request.position
        if request.text is not None:
            node.text = request.text
        return updated

    def toggle_binding(self, graph: FractalGraph, node_id: str, input_id: str) -> FractalGraph:
        node = self._require_bindable(graph, node_id, input_id)
        return self._replace_node(graph, bindings.toggle_binding(node, input_id))

    def set_binding(
        self,
        graph: FractalGraph,
        node_id: str,
        input_id: str,
        slot: BindingSlot | None,
    ) -> FractalGraph:
        node = self._require_bindable(graph, node_id, input_id)
        return self._replace_node(graph, bindings.set_binding(node, input_id, slot))

    def _normalize_target_handle(
        self,
        graph: FractalGraph,
        target: str,
        target_handle: InputHandle | None,
    ) -> InputHandle | None:
        is_combiner = False
        if target != ROOT_END_ID:
            definition = self._registry.get(self._require_node(graph, target).type)
            is_combiner = bool(definition and definition.is_combiner)

        if is_combiner:
            return target_handle or InputHandle.A
        if target_handle == InputHandle.B:
            raise GraphEditError(f"Node '{target}' has no second input", status_code=422)
        return None

    def _require_bindable(self, graph: FractalGraph, node_id: str, input_id: str) -> GraphNode:
        node = self._require_node(graph, node_id)
        definition = self._registry.get(node.type)
        if definition is not None and definition.find_input(input_id) is None:
            raise GraphEditError(f"Node type '{node.type}' has no input '{input_id}'", status_code=422)
        return node

    @staticmethod
    def _replace_node(graph: FractalGraph, replacement: GraphNode) -> FractalGraph:
        updated = graph.model_copy(deep=True)
        updated.nodes = [replacement if node.id == replacement.id else node for node in updated.nodes]
        return updated

    @staticmethod
    def _require_node(graph: FractalGraph, node_id: str) -> GraphNode:
        node = graph.find_node(node_id)
        if node is None:
            raise GraphEditError(f"Node '{node_id}' not found", status_code=404)
        return node

    @staticmethod
    def _validated(graph: FractalGraph) -> FractalGraph:
        # Re-run the size and id checks that model_copy skips.
        try:
            return FractalGraph.model_validate(graph.model_dump())
        except ValueError as exc:
            raise GraphEditError(str(exc), status_code=422) from exc

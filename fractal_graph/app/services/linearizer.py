from __future__ import annotations

import heapq
from collections.abc import Iterable, Sequence

from fractal_graph.app.models.graph import (
    ROOT_END_ID,
    ROOT_START_ID,
    SENTINEL_IDS,
    Edge,
    FractalGraph,
    GraphNode,
    NodePosition,
    PipelineNode,
    edge_id_for,
)
from fractal_graph.app.services.compile_errors import GraphCycleError

CHAIN_POSITION_X = 250.0
CHAIN_POSITION_Y = 150.0
CHAIN_POSITION_SPACING = 200.0


def linearize(nodes: Sequence[GraphNode | PipelineNode], edges: Iterable[Edge]) -> list[PipelineNode]:
    """Topologically sort the real nodes of a graph into a canonical pipeline.

    Kahn's algorithm; among ready nodes the lexicographically smallest id is
    always taken next, so the order depends only on ids and edge topology.
    Sentinel nodes and edges touching missing nodes are ignored.
    """
    node_map = {node.id: node for node in nodes if node.id not in SENTINEL_IDS}
    indegree: dict[str, int] = {node_id: 0 for node_id in node_map}
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_map}

    for edge in edges:
        if edge.source not in node_map or edge.target not in node_map:
            continue
        adjacency[edge.source].append(edge.target)
        indegree[edge.target] += 1

    ready = [node_id for node_id, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: list[PipelineNode] = []

    while ready:
        node_id = heapq.heappop(ready)
        ordered.append(_strip_position(node_map[node_id]))
        for target in adjacency[node_id]:
            indegree[target] -= 1
            if indegree[target] == 0:
                heapq.heappush(ready, target)

    if len(ordered) != len(node_map):
        stuck = sorted(node_id for node_id, degree in indegree.items() if degree > 0)
        raise GraphCycleError(
            [
                "Internal compiler error: graph contains a cycle that bypassed validation "
                f"(unresolved nodes: {', '.join(stuck)})."
            ]
        )

    return ordered


def pipeline_to_graph(pipeline: Sequence[PipelineNode]) -> FractalGraph:
    nodes = [
        GraphNode(
            **node.model_dump(exclude={"position"}),
            position=NodePosition(x=CHAIN_POSITION_X, y=CHAIN_POSITION_Y + index * CHAIN_POSITION_SPACING),
        )
        for index, node in enumerate(pipeline)
    ]
    edges: list[Edge] = []
    if nodes:
        chain = [ROOT_START_ID, *[node.id for node in nodes], ROOT_END_ID]
        for source, target in zip(chain, chain[1:]):
            edge_id = edge_id_for(source, target, taken={edge.id for edge in edges})
            edges.append(Edge(id=edge_id, source=source, target=target))
    return FractalGraph(nodes=nodes, edges=edges)


def _strip_position(node: GraphNode | PipelineNode) -> PipelineNode:
    if isinstance(node, GraphNode):
        return node.to_pipeline_node()
    return node.model_copy(deep=True)

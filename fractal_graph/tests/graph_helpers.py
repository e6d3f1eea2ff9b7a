from __future__ import annotations

from fractal_graph.app.models.graph import ROOT_END_ID, ROOT_START_ID, Edge, FractalGraph, GraphNode, InputHandle


def node(node_id: str, node_type: str = "Abs", **fields) -> GraphNode:
    return GraphNode(id=node_id, type=node_type, **fields)


def edge(source: str, target: str, handle: InputHandle | None = None) -> Edge:
    edge_id = f"e-{source}-{target}" + (f"-{handle.value}" if handle else "")
    return Edge(id=edge_id, source=source, target=target, target_handle=handle)


def chain(*node_ids: str) -> list[Edge]:
    ids = [ROOT_START_ID, *node_ids, ROOT_END_ID]
    return [edge(source, target) for source, target in zip(ids, ids[1:])]


def graph(nodes: list[GraphNode], edges: list[Edge]) -> FractalGraph:
    return FractalGraph(nodes=nodes, edges=edges)

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator

from fractal_graph.app.models.graph import Edge, GraphNode, PipelineNode


def would_create_cycle(
    nodes: Iterable[GraphNode | PipelineNode],
    edges: Iterable[Edge],
    candidate: Edge,
) -> bool:
    """Return True when adding ``candidate`` to ``edges`` closes a directed cycle.

    Runs an iterative depth-first search from every vertex, tracking the
    vertices currently on the DFS stack. Inputs are never mutated.
    """
    adjacency: dict[str, list[str]] = defaultdict(list)
    vertices: list[str] = [node.id for node in nodes]
    for edge in [*edges, candidate]:
        adjacency[edge.source].append(edge.target)
        vertices.extend((edge.source, edge.target))

    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in vertices:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(adjacency.get(root, ())))]
        while stack:
            vertex, successors = stack[-1]
            advanced = False
            for successor in successors:
                if successor in on_stack:
                    return True
                if successor not in visited:
                    visited.add(successor)
                    on_stack.add(successor)
                    stack.append((successor, iter(adjacency.get(successor, ()))))
                    advanced = True
                    break
            if not advanced:
                on_stack.discard(vertex)
                stack.pop()
    return False

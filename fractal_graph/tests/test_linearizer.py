from __future__ import annotations

import pytest

from fractal_graph.app.models.graph import PipelineNode
from fractal_graph.app.services.compile_errors import GraphCycleError
from fractal_graph.app.services.linearizer import linearize, pipeline_to_graph
from fractal_graph.tests.graph_helpers import chain, edge, node


def test_every_edge_is_respected_and_each_node_appears_once() -> None:
    nodes = [node("d"), node("c"), node("b"), node("a")]
    edges = [edge("d", "a"), edge("c", "a"), edge("b", "d"), *chain("b")]

    ordered = [item.id for item in linearize(nodes, edges)]

    assert sorted(ordered) == ["a", "b", "c", "d"]
    for item in edges:
        if item.source in ordered and item.target in ordered:
            assert ordered.index(item.source) < ordered.index(item.target)


def test_ready_ties_break_on_smallest_id() -> None:
    nodes = [node("zeta"), node("alpha"), node("mid")]

    assert [item.id for item in linearize(nodes, [])] == ["alpha", "mid", "zeta"]


def test_order_is_independent_of_edit_history() -> None:
    first = linearize([node("n1"), node("n2"), node("n3")], [edge("n1", "n3"), edge("n2", "n3")])
    second = linearize([node("n3"), node("n2"), node("n1")], [edge("n2", "n3"), edge("n1", "n3")])

    assert [item.model_dump() for item in first] == [item.model_dump() for item in second]


def test_sentinels_and_positions_are_stripped() -> None:
    pipeline = linearize([node("a", position={"x": 10, "y": 20})], chain("a"))

    assert len(pipeline) == 1
    assert type(pipeline[0]) is PipelineNode
    assert "position" not in pipeline[0].model_dump()


def test_edges_to_missing_nodes_are_ignored() -> None:
    pipeline = linearize([node("b"), node("a")], [edge("ghost", "a"), edge("b", "a")])

    assert [item.id for item in pipeline] == ["b", "a"]


def test_cycle_raises_internal_error() -> None:
    with pytest.raises(GraphCycleError) as exc_info:
        linearize([node("a"), node("b")], [edge("a", "b"), edge("b", "a")])

    assert "Internal compiler error" in exc_info.value.diagnostics[0]
    assert "a, b" in exc_info.value.diagnostics[0]


def test_pipeline_round_trips_through_chain_graph() -> None:
    pipeline = [
        PipelineNode(id="z-last", type="Abs"),
        PipelineNode(id="a-first", type="Scale", params={"scale": 3.0}),
        PipelineNode(id="m-mid", type="Rotate", bindings={"z": "C"}, enabled=False),
    ]

    graph = pipeline_to_graph(pipeline)

    assert [item.id for item in graph.edges] == [
        "e-root-start-z-last",
        "e-z-last-a-first",
        "e-a-first-m-mid",
        "e-m-mid-root-end",
    ]
    assert [item.position.y for item in graph.nodes] == [150.0, 350.0, 550.0]
    restored = linearize(graph.nodes, graph.edges)
    assert [item.model_dump() for item in restored] == [item.model_dump() for item in pipeline]


def test_empty_pipeline_has_no_edges() -> None:
    graph = pipeline_to_graph([])

    assert graph.nodes == []
    assert graph.edges == []


def test_chain_graph_keeps_edge_ids_unique_for_hyphenated_ids() -> None:
    pipeline = [
        PipelineNode(id="a", type="Abs"),
        PipelineNode(id="b-c", type="Abs"),
        PipelineNode(id="a-b", type="Abs"),
        PipelineNode(id="c", type="Abs"),
    ]

    graph = pipeline_to_graph(pipeline)

    assert [item.id for item in graph.edges] == [
        "e-root-start-a",
        "e-a-b-c",
        "e-b-c-a-b",
        "e-a-b-c-2",
        "e-c-root-end",
    ]
    assert [item.id for item in linearize(graph.nodes, graph.edges)] == ["a", "b-c", "a-b", "c"]

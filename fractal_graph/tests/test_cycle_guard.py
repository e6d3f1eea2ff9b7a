from __future__ import annotations

from fractal_graph.app.models.graph import ROOT_END_ID, ROOT_START_ID
from fractal_graph.app.services.cycle_guard import would_create_cycle
from fractal_graph.tests.graph_helpers import chain, edge, node


def test_back_edge_closes_cycle() -> None:
    nodes = [node("a"), node("b"), node("c")]
    edges = [edge("a", "b"), edge("b", "c")]

    assert would_create_cycle(nodes, edges, edge("c", "a")) is True
    assert would_create_cycle(nodes, edges, edge("a", "c")) is False


def test_self_loop_is_a_cycle() -> None:
    assert would_create_cycle([node("a")], [], edge("a", "a")) is True


def test_sentinels_never_form_cycles_with_forward_edges() -> None:
    nodes = [node("a"), node("b")]
    edges = chain("a", "b")

    assert would_create_cycle(nodes, edges, edge(ROOT_START_ID, "b")) is False
    assert would_create_cycle(nodes, edges, edge("a", ROOT_END_ID)) is False


def test_check_does_not_mutate_inputs() -> None:
    nodes = [node("a"), node("b")]
    edges = [edge("a", "b")]
    snapshot = [item.model_copy() for item in edges]

    would_create_cycle(nodes, edges, edge("b", "a"))

    assert edges == snapshot


def test_long_chain_does_not_hit_recursion_limit() -> None:
    ids = [f"n{index:05d}" for index in range(5_000)]
    nodes = [node(node_id) for node_id in ids]
    edges = [edge(source, target) for source, target in zip(ids, ids[1:])]

    assert would_create_cycle(nodes, edges, edge(ids[-1], ids[0])) is True

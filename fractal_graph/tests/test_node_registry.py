from __future__ import annotations

import pytest

from fractal_graph.app.models.node_definition import InputSpec, NodeCategory, NodeDefinition
from fractal_graph.app.services.node_registry import NodeRegistry, get_node_registry


def test_builtin_catalog_is_grouped_by_category() -> None:
    registry = get_node_registry()

    categories = registry.categories()

    assert sum(categories.values()) == 26
    assert categories["Fractals"] >= 2
    assert "Mandelbulb" in registry
    assert "Teapot" not in registry


def test_list_definitions_filters_and_sorts() -> None:
    registry = get_node_registry()

    folds = registry.list_definitions(NodeCategory.FOLDS)

    assert folds
    assert all(definition.category == NodeCategory.FOLDS for definition in folds)
    assert [definition.id for definition in folds] == sorted(definition.id for definition in folds)


def test_only_combiners_take_a_second_input() -> None:
    registry = get_node_registry()

    combiners = {definition.id for definition in registry.list_definitions() if definition.is_combiner}

    assert combiners == {"Union", "Subtract", "Intersect", "SmoothUnion", "Mix"}


def test_duplicate_registration_is_rejected() -> None:
    definition = NodeDefinition(id="Twice", label="Twice", category=NodeCategory.UTILS)

    with pytest.raises(ValueError, match="more than once"):
        NodeRegistry([definition, definition])


def test_definitions_reject_reserved_input_ids() -> None:
    with pytest.raises(ValueError, match="reserved"):
        NodeDefinition(
            id="Bad",
            label="Bad",
            category=NodeCategory.UTILS,
            inputs=[InputSpec(id="out", label="Out", min=0, max=1, step=0.1, default=0)],
        )


def test_default_params_follow_input_specs() -> None:
    definition = get_node_registry().get("Mandelbulb")

    assert definition is not None
    assert definition.default_params()["power"] == 8.0
    assert definition.find_input("missing") is None

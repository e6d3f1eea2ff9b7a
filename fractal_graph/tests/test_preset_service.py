from __future__ import annotations

import pytest
from fastapi import HTTPException

from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.services.node_registry import get_node_registry
from fractal_graph.app.services.preset_service import PresetService


def test_every_builtin_preset_compiles() -> None:
    compiler = CompilerService(get_node_registry())

    for preset in PresetService().list_presets():
        artifact = compiler.emit(preset.pipeline)
        assert artifact.source.startswith("void formula_Modular(")
        assert artifact.diagnostics == []


def test_instantiate_assigns_fresh_ids() -> None:
    service = PresetService()

    first = service.instantiate("Marble Marcher")
    second = service.instantiate("Marble Marcher")

    assert [node.type for node in first] == ["Abs", "Rotate", "MengerFold", "Rotate", "IFSScale"]
    assert first[0].id.startswith("abs-")
    assert {node.id for node in first}.isdisjoint(node.id for node in second)
    assert first[1].bindings == second[1].bindings


def test_presets_are_copied_on_read() -> None:
    service = PresetService()

    preset = service.get_preset("Kleinian")
    preset.pipeline.clear()

    assert len(service.get_preset("Kleinian").pipeline) == 4


def test_unknown_preset_is_not_found() -> None:
    with pytest.raises(HTTPException) as exc_info:
        PresetService().get_preset("Nope")

    assert exc_info.value.status_code == 404

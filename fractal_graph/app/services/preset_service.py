from __future__ import annotations

from uuid import uuid4

from fastapi import HTTPException

from fractal_graph.app.models.formula import ModularPreset
from fractal_graph.app.models.graph import PipelineNode


def _node(node_id: str, node_type: str, params: dict[str, float] | None = None, **bindings: str) -> PipelineNode:
    return PipelineNode(id=node_id, type=node_type, params=params or {}, bindings=bindings)


BUILTIN_PRESETS: list[ModularPreset] = [
    ModularPreset(name="Empty Scene"),
    ModularPreset(
        name="Mandelbulb (Standard)",
        pipeline=[
            _node("mod-1", "Mod", {"x": 0, "y": 0, "z": 0}),
            _node("rot-1", "Rotate", {"x": 0, "y": 0, "z": 0}),
            _node("mb-1", "Mandelbulb", {"power": 8.0}),
            _node("add-c", "AddConstant", {"scale": 1.0}),
        ],
    ),
    ModularPreset(
        name="Amazing Box (Classic)",
        pipeline=[
            _node("box-1", "BoxFold", {"limit": 1.0}),
            _node("sph-1", "SphereFold", {"minR": 0.5, "fixedR": 1.0}),
            _node("scl-1", "Scale", {"scale": 2.0}),
            _node("add-c", "AddConstant", {"scale": 1.0}),
        ],
    ),
    ModularPreset(
        name="MixPinski (IFS)",
        pipeline=[
            _node("mix-1", "SierpinskiFold"),
            _node("mix-2", "Rotate", {"x": 0, "y": 0, "z": 0}, z="C"),
            _node("mix-3", "IFSScale", {"scale": 2.0, "offset": 1.0}),
        ],
    ),
    ModularPreset(
        name="Menger Sponge",
        pipeline=[
            _node("meng-1", "Abs"),
            _node("meng-2", "MengerFold"),
            _node("meng-3", "Rotate", {"x": 0, "y": 0, "z": 0}),
            _node("meng-4", "IFSScale", {"scale": 3.0, "offset": 1.0}),
        ],
    ),
    ModularPreset(
        name="Kleinian",
        pipeline=[
            _node("klein-1", "BoxFold", {"limit": 1.0}),
            _node("klein-2", "SphereFold", {"minR": 0.5, "fixedR": 1.0}),
            _node("klein-3", "IFSScale", {"scale": 1.8, "offset": 0.0}),
            _node("klein-4", "Translate", {"x": 1, "y": 0, "z": 0}),
        ],
    ),
    ModularPreset(
        name="Marble Marcher",
        pipeline=[
            _node("marb-1", "Abs"),
            _node("marb-2", "Rotate", {"x": 0, "y": 0, "z": 0}, z="C"),
            _node("marb-3", "MengerFold"),
            _node("marb-4", "Rotate", {"x": 0, "y": 0, "z": 0}, x="D"),
            _node("marb-5", "IFSScale", {"scale": 2.0, "offset": 2.0}),
        ],
    ),
]


class PresetService:
    def __init__(self, presets: list[ModularPreset] | None = None) -> None:
        self._presets = {preset.name: preset for preset in (presets if presets is not None else BUILTIN_PRESETS)}

    def list_presets(self) -> list[ModularPreset]:
        return [preset.model_copy(deep=True) for preset in self._presets.values()]

    def get_preset(self, name: str) -> ModularPreset:
        preset = self._presets.get(name)
        if not preset:
            raise HTTPException(status_code=404, detail=f"Preset '{name}' not found")
        return preset.model_copy(deep=True)

    def instantiate(self, name: str) -> list[PipelineNode]:
        """Copy a preset's pipeline with fresh node ids so repeated loads never collide."""
        return [
            node.model_copy(update={"id": f"{node.type.lower()}-{uuid4().hex[:8]}"}, deep=True)
            for node in self.get_preset(name).pipeline
        ]

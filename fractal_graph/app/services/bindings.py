from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

from fractal_graph.app.models.graph import BindingSlot, PipelineNode
from fractal_graph.app.models.node_definition import NodeDefinition
from fractal_graph.app.services.compile_errors import CompilationError

MODULAR_PARAMS_UNIFORM = "uModularParams"

# Manual cycling only walks A-D; E and F are assigned through set_binding.
TOGGLE_SEQUENCE: tuple[BindingSlot | None, ...] = (
    None,
    BindingSlot.A,
    BindingSlot.B,
    BindingSlot.C,
    BindingSlot.D,
)


@dataclass(slots=True, frozen=True)
class LiteralParam:
    value: float
    kind: Literal["literal"] = "literal"


@dataclass(slots=True, frozen=True)
class BoundParam:
    slot: BindingSlot
    kind: Literal["bound"] = "bound"


ParamReference = LiteralParam | BoundParam


def resolve(node: PipelineNode, input_id: str, definition: NodeDefinition | None = None) -> ParamReference:
    slot = node.bindings.get(input_id)
    if slot is not None:
        return BoundParam(slot=slot)

    spec = definition.find_input(input_id) if definition is not None else None
    value = node.params.get(input_id)
    if value is None:
        value = spec.default if spec is not None else 0.0
    if spec is not None:
        value = spec.clamp(value)
    return LiteralParam(value=float(value))


def next_binding(current: BindingSlot | None) -> BindingSlot | None:
    if current not in TOGGLE_SEQUENCE:
        return None
    index = TOGGLE_SEQUENCE.index(current)
    return TOGGLE_SEQUENCE[(index + 1) % len(TOGGLE_SEQUENCE)]


def toggle_binding(node: PipelineNode, input_id: str) -> PipelineNode:
    return set_binding(node, input_id, next_binding(node.bindings.get(input_id)))


def set_binding(node: PipelineNode, input_id: str, slot: BindingSlot | None) -> PipelineNode:
    bindings = {key: value for key, value in node.bindings.items() if value is not None and key != input_id}
    if slot is not None:
        bindings[input_id] = slot
    return node.model_copy(update={"bindings": bindings}, deep=True)


def render_reference(reference: ParamReference, slot_index: int | None = None) -> str:
    if isinstance(reference, BoundParam):
        return reference.slot.uniform_name
    if slot_index is not None:
        return f"{MODULAR_PARAMS_UNIFORM}[{slot_index}]"
    return format_float_literal(reference.value)


def format_float_literal(value: float) -> str:
    if not math.isfinite(value):
        raise CompilationError([f"Parameter value '{value}' cannot be written as a shader literal."])
    rendered = repr(float(value))
    if "e" in rendered and "." not in rendered.split("e")[0]:
        mantissa, exponent = rendered.split("e")
        rendered = f"{mantissa}.0e{exponent}"
    return rendered

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from string import Template

from pydantic import BaseModel, ConfigDict, Field, model_validator

OUTPUT_PLACEHOLDER = "out"
INPUT_A_PLACEHOLDER = "in_a"
INPUT_B_PLACEHOLDER = "in_b"
RESERVED_PLACEHOLDERS = frozenset({OUTPUT_PLACEHOLDER, INPUT_A_PLACEHOLDER, INPUT_B_PLACEHOLDER})


class NodeCategory(StrEnum):
    FRACTALS = "Fractals"
    TRANSFORMS = "Transforms"
    FOLDS = "Folds"
    PRIMITIVES = "Primitives"
    COMBINERS = "Combiners (CSG)"
    UTILS = "Utils"
    DISTORTION = "Distortion"


class InputSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    label: str = Field(min_length=1)
    min: float
    max: float
    step: float = Field(gt=0)
    default: float
    hard_min: float | None = None
    hard_max: float | None = None

    def clamp(self, value: float) -> float:
        if self.hard_min is not None and value < self.hard_min:
            return self.hard_min
        if self.hard_max is not None and value > self.hard_max:
            return self.hard_max
        return value


@dataclass(slots=True)
class EmissionContext:
    """Names handed to a definition while its fragment is rendered.

    ``param`` returns the shader expression for one of the definition's inputs:
    a float literal, a bound global slot uniform, or a modular parameter slot.
    """

    out_var: str
    in_a: str
    in_b: str
    param: Callable[[str], str]


class _EmissionScope(Mapping[str, str]):
    def __init__(self, context: EmissionContext) -> None:
        self._context = context

    def __getitem__(self, key: str) -> str:
        if key == OUTPUT_PLACEHOLDER:
            return self._context.out_var
        if key == INPUT_A_PLACEHOLDER:
            return self._context.in_a
        if key == INPUT_B_PLACEHOLDER:
            return self._context.in_b
        return self._context.param(key)

    def __iter__(self) -> Iterator[str]:
        return iter(RESERVED_PLACEHOLDERS)

    def __len__(self) -> int:
        return len(RESERVED_PLACEHOLDERS)


class NodeDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    category: NodeCategory
    description: str = ""
    inputs: list[InputSpec] = Field(default_factory=list)
    template: str = ""

    @model_validator(mode="after")
    def validate_inputs(self) -> "NodeDefinition":
        ids = [spec.id for spec in self.inputs]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Node definition '{self.id}' declares duplicate input ids")
        reserved = RESERVED_PLACEHOLDERS.intersection(ids)
        if reserved:
            raise ValueError(f"Node definition '{self.id}' uses reserved input ids: {sorted(reserved)}")
        return self

    @property
    def is_combiner(self) -> bool:
        return self.category == NodeCategory.COMBINERS

    def find_input(self, input_id: str) -> InputSpec | None:
        for spec in self.inputs:
            if spec.id == input_id:
                return spec
        return None

    def default_params(self) -> dict[str, float]:
        return {spec.id: spec.default for spec in self.inputs}

    def emit(self, context: EmissionContext) -> str:
        return Template(self.template).substitute(_EmissionScope(context))

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from fractal_graph.app.models.graph import (
    BindingSlot,
    Edge,
    FractalGraph,
    InputHandle,
    NodeCondition,
    NodePosition,
    PipelineNode,
)


class SessionState(StrEnum):
    IDLE = "idle"
    DIRTY = "dirty"
    COMPILING = "compiling"
    COMPILED = "compiled"
    ERROR = "error"


class CompileMode(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


class SessionCreateRequest(BaseModel):
    formula_id: str | None = Field(default=None, min_length=1)
    preset: str | None = Field(default=None, min_length=1)
    pipeline: list[PipelineNode] | None = None
    compile_mode: CompileMode | None = None

    @model_validator(mode="after")
    def validate_single_source(self) -> "SessionCreateRequest":
        sources = [value for value in (self.formula_id, self.preset, self.pipeline) if value is not None]
        if len(sources) > 1:
            raise ValueError("Provide at most one of formula_id, preset or pipeline when creating a session.")
        return self


class SessionInfo(BaseModel):
    session_id: str
    formula_id: str | None = None
    state: SessionState
    compile_mode: CompileMode
    revision: int
    compiled_revision: int | None = None
    pending_changes: bool = False
    node_count: int
    edge_count: int
    created_at: datetime


class PreviewNode(BaseModel):
    node: PipelineNode
    position: NodePosition
    label: str
    category: str | None = None
    placeholder: bool = False


class SessionGraphResponse(BaseModel):
    session_id: str
    revision: int
    graph: FractalGraph
    preview: list[PreviewNode] = Field(default_factory=list)


class PipelineResponse(BaseModel):
    session_id: str
    revision: int
    pipeline: list[PipelineNode]


class AddNodeRequest(BaseModel):
    type: str = Field(min_length=1)
    id: str | None = Field(default=None, min_length=1, max_length=64)
    position: NodePosition | None = None
    params: dict[str, float] = Field(default_factory=dict)
    text: str | None = None


class UpdateNodeRequest(BaseModel):
    params: dict[str, float] | None = None
    enabled: bool | None = None
    condition: NodeCondition | None = None
    clear_condition: bool = False
    position: NodePosition | None = None
    text: str | None = None


class SetBindingRequest(BaseModel):
    slot: BindingSlot | None = None


class ConnectRequest(BaseModel):
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    source_handle: InputHandle | None = None
    target_handle: InputHandle | None = None


class GraphMutationResponse(BaseModel):
    session_id: str
    revision: int
    state: SessionState
    requires_recompile: bool
    pipeline: list[PipelineNode]


class EdgeMutationResponse(GraphMutationResponse):
    accepted: bool
    edge: Edge | None = None
    warning: str | None = None


class CompileModeRequest(BaseModel):
    compile_mode: CompileMode


class CompileCompleteRequest(BaseModel):
    revision: int = Field(ge=0)
    success: bool = True
    message: str | None = None


class ParamSlot(BaseModel):
    node_id: str
    input_id: str
    index: int


class CompileResponse(BaseModel):
    session_id: str
    revision: int
    state: SessionState
    source: str
    uniforms: list[str] = Field(default_factory=list)
    uniform_block: str = ""
    param_slots: list[ParamSlot] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)


class UniformValuesResponse(BaseModel):
    session_id: str
    revision: int
    values: list[float]


class SaveSessionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = Field(default="", max_length=2_048)


class SessionActionResponse(BaseModel):
    session_id: str
    state: SessionState
    detail: str


class SessionEvent(BaseModel):
    session_id: str
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str
    payload: dict[str, str | int | float | bool | None | list[float]] = Field(default_factory=dict)


@dataclass
class ShaderArtifact:
    source: str
    uniforms: list[str] = field(default_factory=list)
    uniform_block: str = ""
    param_slots: list[ParamSlot] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

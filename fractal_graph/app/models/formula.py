from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from fractal_graph.app.models.graph import MAX_GRAPH_NODES, SENTINEL_IDS, PipelineNode
from fractal_graph.app.models.session import ParamSlot


def _validate_pipeline_nodes(pipeline: list[PipelineNode]) -> list[PipelineNode]:
    if len(pipeline) > MAX_GRAPH_NODES:
        raise ValueError(f"Pipeline exceeds maximum node count ({MAX_GRAPH_NODES})")
    ids = [node.id for node in pipeline]
    if len(ids) != len(set(ids)):
        raise ValueError("Node IDs must be unique")
    if SENTINEL_IDS.intersection(ids):
        raise ValueError("Pipeline nodes cannot use sentinel IDs")
    return pipeline


class FormulaBase(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = Field(default="", max_length=2_048)
    schema_version: int = 1
    pipeline: list[PipelineNode] = Field(default_factory=list)

    @field_validator("pipeline")
    @classmethod
    def validate_pipeline(cls, pipeline: list[PipelineNode]) -> list[PipelineNode]:
        return _validate_pipeline_nodes(pipeline)


class FormulaCreateRequest(FormulaBase):
    pass


class FormulaUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2_048)
    pipeline: list[PipelineNode] | None = None
    schema_version: int | None = None

    @field_validator("pipeline")
    @classmethod
    def validate_pipeline(cls, pipeline: list[PipelineNode] | None) -> list[PipelineNode] | None:
        if pipeline is None:
            return None
        return _validate_pipeline_nodes(pipeline)


class FormulaResponse(FormulaBase):
    id: str
    created_at: datetime
    updated_at: datetime


class FormulaListItem(BaseModel):
    id: str
    name: str
    description: str
    schema_version: int
    node_count: int
    updated_at: datetime


class FormulaDocument(FormulaBase):
    id: str = Field(default_factory=lambda: str(uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ModularPreset(BaseModel):
    name: str
    pipeline: list[PipelineNode] = Field(default_factory=list)


class FormulaCompileResponse(BaseModel):
    formula_id: str
    source: str
    uniforms: list[str] = Field(default_factory=list)
    uniform_block: str = ""
    param_slots: list[ParamSlot] = Field(default_factory=list)
    uniform_values: list[float] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fractal_graph.app.models.graph import FractalGraph, PipelineNode
from fractal_graph.app.models.session import CompileMode, SessionState, ShaderArtifact


@dataclass(slots=True)
class RuntimeSession:
    session_id: str
    graph: FractalGraph
    pipeline: list[PipelineNode]
    compile_mode: CompileMode
    formula_id: str | None = None
    state: SessionState = SessionState.IDLE
    revision: int = 0
    compiled_revision: int | None = None
    pending_changes: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    artifact: ShaderArtifact | None = None
    # Pipeline the renderer's current shader was emitted from; uniform slots follow its layout.
    emitted_pipeline: list[PipelineNode] | None = None
    debounce_task: asyncio.Task[None] | None = None
    in_flight_revision: int | None = None
    queued_compile: bool = False

    def uniform_source_pipeline(self) -> list[PipelineNode]:
        """Emitted node layout carrying the latest parameter values."""
        if self.emitted_pipeline is None:
            return self.pipeline
        current = {node.id: node for node in self.pipeline}
        return [
            node.model_copy(update={"params": dict(current[node.id].params)}) if node.id in current else node
            for node in self.emitted_pipeline
        ]

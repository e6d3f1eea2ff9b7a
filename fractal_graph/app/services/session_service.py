from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar
from uuid import uuid4

from fastapi import HTTPException

from fractal_graph.app.core.config import Settings
from fractal_graph.app.engine.session_runtime import RuntimeSession
from fractal_graph.app.models.formula import FormulaCreateRequest, FormulaResponse
from fractal_graph.app.models.graph import BindingSlot, FractalGraph, PipelineNode
from fractal_graph.app.models.session import (
    AddNodeRequest,
    CompileCompleteRequest,
    CompileMode,
    CompileResponse,
    ConnectRequest,
    EdgeMutationResponse,
    GraphMutationResponse,
    PipelineResponse,
    PreviewNode,
    SaveSessionRequest,
    SessionActionResponse,
    SessionCreateRequest,
    SessionEvent,
    SessionGraphResponse,
    SessionInfo,
    SessionState,
    ShaderArtifact,
    UniformValuesResponse,
    UpdateNodeRequest,
)
from fractal_graph.app.services.compile_errors import CompilationError, GraphEditError
from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.services.event_bus import SessionEventBus
from fractal_graph.app.services.formula_service import FormulaService
from fractal_graph.app.services.graph_editor import GraphEditor
from fractal_graph.app.services.linearizer import linearize, pipeline_to_graph
from fractal_graph.app.services.node_registry import NodeRegistry
from fractal_graph.app.services.preset_service import PresetService
from fractal_graph.app.services.structural_diff import (
    is_exactly_equal,
    is_params_equal,
    is_structurally_equal,
    is_wiring_equal,
)

logger = logging.getLogger(__name__)

EventPayload = dict[str, str | int | float | bool | None | list[float]]
T = TypeVar("T")


class SessionService:
    """Owns the in-memory editing sessions and their compile scheduling.

    In auto mode every topology change schedules a debounced compile; a newer
    change replaces the pending one. Only one compile is handed to the
    renderer at a time: changes arriving while it is in flight collapse into a
    single follow-up dispatched from ``complete_compile``.
    """

    def __init__(
        self,
        settings: Settings,
        registry: NodeRegistry,
        formula_service: FormulaService,
        preset_service: PresetService,
        compiler_service: CompilerService,
        event_bus: SessionEventBus,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._formula_service = formula_service
        self._preset_service = preset_service
        self._compiler_service = compiler_service
        self._editor = GraphEditor(registry)
        self._event_bus = event_bus
        self._sessions: dict[str, RuntimeSession] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, request: SessionCreateRequest) -> SessionInfo:
        pipeline = self._resolve_initial_pipeline(request)
        try:
            graph = pipeline_to_graph(pipeline)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        runtime = RuntimeSession(
            session_id=str(uuid4()),
            graph=graph,
            pipeline=self._linearize(graph),
            compile_mode=request.compile_mode or CompileMode(self._settings.default_compile_mode),
            formula_id=request.formula_id,
        )

        async with self._lock:
            self._sessions[runtime.session_id] = runtime

        logger.info(
            "Created session '%s' with %d nodes (%s mode)",
            runtime.session_id,
            len(runtime.pipeline),
            runtime.compile_mode.value,
        )
        await self._publish(
            runtime.session_id,
            "session_created",
            {"formula_id": runtime.formula_id, "node_count": len(runtime.pipeline)},
        )

        if runtime.compile_mode == CompileMode.AUTO:
            self._schedule_compile(runtime)
        else:
            runtime.pending_changes = True
        return self._session_info(runtime)

    async def list_sessions(self) -> list[SessionInfo]:
        async with self._lock:
            sessions = list(self._sessions.values())
        return [self._session_info(runtime) for runtime in sessions]

    async def get_session(self, session_id: str) -> SessionInfo:
        runtime = await self._get_session(session_id)
        return self._session_info(runtime)

    async def get_graph(self, session_id: str) -> SessionGraphResponse:
        runtime = await self._get_session(session_id)
        positions = {node.id: node.position for node in runtime.graph.nodes}
        preview: list[PreviewNode] = []
        for node in runtime.pipeline:
            definition = self._registry.get(node.type)
            preview.append(
                PreviewNode(
                    node=node,
                    position=positions[node.id],
                    label=definition.label if definition else node.type,
                    category=definition.category.value if definition else None,
                    placeholder=definition is None,
                )
            )
        return SessionGraphResponse(
            session_id=runtime.session_id,
            revision=runtime.revision,
            graph=runtime.graph.model_copy(deep=True),
            preview=preview,
        )

    async def get_pipeline(self, session_id: str) -> PipelineResponse:
        runtime = await self._get_session(session_id)
        return PipelineResponse(
            session_id=runtime.session_id,
            revision=runtime.revision,
            pipeline=[node.model_copy(deep=True) for node in runtime.pipeline],
        )

    async def add_node(self, session_id: str, request: AddNodeRequest) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph, _node = self._edit(
            self._editor.add_node,
            runtime.graph,
            request.type,
            request.id,
            request.position,
            request.params,
            request.text,
        )
        return await self._apply_graph(runtime, graph)

    async def remove_node(self, session_id: str, node_id: str) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph = self._edit(self._editor.remove_node, runtime.graph, node_id)
        return await self._apply_graph(runtime, graph)

    async def update_node(self, session_id: str, node_id: str, request: UpdateNodeRequest) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph = self._edit(self._editor.update_node, runtime.graph, node_id, request)
        return await self._apply_graph(runtime, graph)

    async def toggle_binding(self, session_id: str, node_id: str, input_id: str) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph = self._edit(self._editor.toggle_binding, runtime.graph, node_id, input_id)
        return await self._apply_graph(runtime, graph)

    async def set_binding(
        self,
        session_id: str,
        node_id: str,
        input_id: str,
        slot: BindingSlot | None,
    ) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph = self._edit(self._editor.set_binding, runtime.graph, node_id, input_id, slot)
        return await self._apply_graph(runtime, graph)

    async def connect(self, session_id: str, request: ConnectRequest) -> EdgeMutationResponse:
        runtime = await self._get_session(session_id)
        result = self._edit(
            self._editor.connect,
            runtime.graph,
            request.source,
            request.target,
            request.target_handle,
            request.source_handle,
        )

        if not result.accepted:
            await self._publish(
                runtime.session_id,
                "edge_rejected",
                {"source": request.source, "target": request.target, "warning": result.warning},
            )
            return EdgeMutationResponse(
                **self._mutation_response(runtime, requires_recompile=False).model_dump(),
                accepted=False,
                warning=result.warning,
            )

        response = await self._apply_graph(runtime, result.graph)
        return EdgeMutationResponse(**response.model_dump(), accepted=True, edge=result.edge)

    async def disconnect(self, session_id: str, edge_id: str) -> GraphMutationResponse:
        runtime = await self._get_session(session_id)
        graph = self._edit(self._editor.disconnect, runtime.graph, edge_id)
        return await self._apply_graph(runtime, graph)

    async def set_compile_mode(self, session_id: str, compile_mode: CompileMode) -> SessionInfo:
        runtime = await self._get_session(session_id)
        if runtime.compile_mode == compile_mode:
            return self._session_info(runtime)

        runtime.compile_mode = compile_mode
        if compile_mode == CompileMode.MANUAL:
            if self._cancel_debounce(runtime):
                runtime.pending_changes = True
        elif runtime.pending_changes:
            runtime.pending_changes = False
            self._schedule_compile(runtime)

        logger.info("Session '%s' switched to %s compile mode", runtime.session_id, compile_mode.value)
        return self._session_info(runtime)

    async def compile_session(self, session_id: str) -> CompileResponse:
        runtime = await self._get_session(session_id)
        self._cancel_debounce(runtime)

        try:
            artifact = self._dispatch(runtime)
        except CompilationError as error:
            await self._publish_compile_failed(runtime, error.diagnostics)
            raise HTTPException(status_code=422, detail={"diagnostics": error.diagnostics}) from error

        await self._publish_compile_requested(runtime)
        return self._compile_response(runtime, artifact)

    async def get_artifact(self, session_id: str) -> CompileResponse:
        runtime = await self._get_session(session_id)
        if runtime.artifact is None:
            raise HTTPException(status_code=404, detail=f"Session '{session_id}' has no compiled shader yet")
        return self._compile_response(runtime, runtime.artifact)

    async def complete_compile(self, session_id: str, request: CompileCompleteRequest) -> SessionInfo:
        runtime = await self._get_session(session_id)
        if runtime.in_flight_revision != request.revision:
            raise HTTPException(
                status_code=409,
                detail=f"Revision {request.revision} is not the compile in flight for session '{session_id}'",
            )

        runtime.in_flight_revision = None
        if request.success:
            runtime.compiled_revision = request.revision
            runtime.state = SessionState.DIRTY if runtime.queued_compile else SessionState.COMPILED
            await self._publish(runtime.session_id, "compile_completed", {"revision": request.revision})
        else:
            runtime.state = SessionState.ERROR
            await self._publish(
                runtime.session_id,
                "compile_failed",
                {"revision": request.revision, "errors": request.message or "Renderer rejected the shader"},
            )

        if runtime.queued_compile:
            runtime.queued_compile = False
            await self._run_compile(runtime)
        return self._session_info(runtime)

    async def get_uniforms(self, session_id: str) -> UniformValuesResponse:
        runtime = await self._get_session(session_id)
        return UniformValuesResponse(
            session_id=runtime.session_id,
            revision=runtime.revision,
            values=self._pack_uniforms(runtime),
        )

    async def save_session(self, session_id: str, request: SaveSessionRequest) -> FormulaResponse:
        runtime = await self._get_session(session_id)
        formula = self._formula_service.create_formula(
            FormulaCreateRequest(name=request.name, description=request.description, pipeline=runtime.pipeline)
        )
        runtime.formula_id = formula.id
        return formula

    async def flush(self, session_id: str) -> SessionInfo:
        """Run a pending debounced compile now instead of waiting for the timer."""
        runtime = await self._get_session(session_id)
        if self._cancel_debounce(runtime):
            await self._run_compile(runtime)
        return self._session_info(runtime)

    async def delete_session(self, session_id: str) -> SessionActionResponse:
        runtime = await self._get_session(session_id)
        self._cancel_debounce(runtime)

        async with self._lock:
            self._sessions.pop(session_id, None)

        await self._publish(session_id, "session_deleted", {})
        return SessionActionResponse(session_id=session_id, state=runtime.state, detail="deleted")

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
        for runtime in sessions:
            self._cancel_debounce(runtime)

    async def _get_session(self, session_id: str) -> RuntimeSession:
        async with self._lock:
            runtime = self._sessions.get(session_id)
        if not runtime:
            raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
        return runtime

    def _resolve_initial_pipeline(self, request: SessionCreateRequest) -> list[PipelineNode]:
        if request.formula_id:
            return list(self._formula_service.get_formula_document(request.formula_id).pipeline)
        if request.preset:
            return self._preset_service.instantiate(request.preset)
        if request.pipeline is not None:
            return list(request.pipeline)
        return []

    @staticmethod
    def _edit(operation: Callable[..., T], *args: object) -> T:
        try:
            return operation(*args)
        except GraphEditError as error:
            raise HTTPException(status_code=error.status_code, detail=error.message) from error

    @staticmethod
    def _linearize(graph: FractalGraph) -> list[PipelineNode]:
        try:
            return linearize(graph.nodes, graph.edges)
        except CompilationError as error:
            logger.error("Linearization failed: %s", " | ".join(error.diagnostics))
            raise HTTPException(status_code=500, detail={"diagnostics": error.diagnostics}) from error

    async def _apply_graph(self, runtime: RuntimeSession, graph: FractalGraph) -> GraphMutationResponse:
        pipeline = self._linearize(graph)
        wiring_equal = is_wiring_equal(runtime.graph.edges, graph.edges)
        requires_recompile = not (is_structurally_equal(runtime.pipeline, pipeline) and wiring_equal)
        params_changed = not is_exactly_equal(runtime.pipeline, pipeline)
        if self._compiler_service.inlines_params and not is_params_equal(runtime.pipeline, pipeline):
            requires_recompile = True

        runtime.graph = graph
        runtime.pipeline = pipeline
        runtime.revision += 1

        await self._publish(
            runtime.session_id,
            "graph_changed",
            {
                "revision": runtime.revision,
                "requires_recompile": requires_recompile,
                "node_count": len(pipeline),
                "edge_count": len(graph.edges),
            },
        )

        if requires_recompile:
            runtime.state = SessionState.DIRTY
            if runtime.compile_mode == CompileMode.AUTO:
                self._schedule_compile(runtime)
            else:
                runtime.pending_changes = True
        elif params_changed:
            await self._publish(
                runtime.session_id,
                "uniforms_updated",
                {"revision": runtime.revision, "values": self._pack_uniforms(runtime)},
            )

        return self._mutation_response(runtime, requires_recompile)

    def _schedule_compile(self, runtime: RuntimeSession) -> None:
        self._cancel_debounce(runtime)
        runtime.debounce_task = asyncio.create_task(
            self._compile_after_delay(runtime, self._settings.compile_debounce_seconds),
            name=f"compile-debounce:{runtime.session_id}",
        )

    @staticmethod
    def _cancel_debounce(runtime: RuntimeSession) -> bool:
        task = runtime.debounce_task
        runtime.debounce_task = None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _compile_after_delay(self, runtime: RuntimeSession, delay_seconds: float) -> None:
        try:
            await asyncio.sleep(delay_seconds)
            if runtime.debounce_task is not asyncio.current_task():
                return
            runtime.debounce_task = None
            await self._run_compile(runtime)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Scheduled compile failed for session '%s'", runtime.session_id)

    async def _run_compile(self, runtime: RuntimeSession) -> None:
        if runtime.in_flight_revision is not None:
            runtime.queued_compile = True
            logger.debug(
                "Session '%s' revision %d queued behind in-flight revision %d",
                runtime.session_id,
                runtime.revision,
                runtime.in_flight_revision,
            )
            return

        try:
            self._dispatch(runtime)
        except CompilationError as error:
            await self._publish_compile_failed(runtime, error.diagnostics)
            return
        await self._publish_compile_requested(runtime)

    def _dispatch(self, runtime: RuntimeSession) -> ShaderArtifact:
        try:
            artifact = self._compiler_service.emit(runtime.pipeline, runtime.graph.edges)
        except CompilationError:
            runtime.state = SessionState.ERROR
            raise

        runtime.artifact = artifact
        runtime.emitted_pipeline = [node.model_copy(deep=True) for node in runtime.pipeline]
        runtime.in_flight_revision = runtime.revision
        runtime.queued_compile = False
        runtime.pending_changes = False
        runtime.state = SessionState.COMPILING
        return artifact

    def _pack_uniforms(self, runtime: RuntimeSession) -> list[float]:
        try:
            return self._compiler_service.pack_uniforms(runtime.uniform_source_pipeline()).tolist()
        except CompilationError as error:
            raise HTTPException(status_code=422, detail={"diagnostics": error.diagnostics}) from error

    async def _publish_compile_requested(self, runtime: RuntimeSession) -> None:
        if runtime.artifact is None:
            raise RuntimeError(f"Session '{runtime.session_id}' has no compiled shader to dispatch.")
        logger.info("Session '%s' requested compile of revision %d", runtime.session_id, runtime.revision)
        await self._publish(
            runtime.session_id,
            "compile_requested",
            {
                "revision": runtime.revision,
                "source": runtime.artifact.source,
                "values": self._pack_uniforms(runtime),
            },
        )

    async def _publish_compile_failed(self, runtime: RuntimeSession, diagnostics: list[str]) -> None:
        logger.warning(
            "Compile failed for session '%s' revision %d: %s",
            runtime.session_id,
            runtime.revision,
            " | ".join(diagnostics),
        )
        await self._publish(
            runtime.session_id,
            "compile_failed",
            {"revision": runtime.revision, "errors": " | ".join(diagnostics)},
        )

    def _compile_response(self, runtime: RuntimeSession, artifact: ShaderArtifact) -> CompileResponse:
        return CompileResponse(
            session_id=runtime.session_id,
            revision=runtime.in_flight_revision if runtime.in_flight_revision is not None else runtime.revision,
            state=runtime.state,
            source=artifact.source,
            uniforms=artifact.uniforms,
            uniform_block=artifact.uniform_block,
            param_slots=artifact.param_slots,
            diagnostics=artifact.diagnostics,
        )

    @staticmethod
    def _mutation_response(runtime: RuntimeSession, requires_recompile: bool) -> GraphMutationResponse:
        return GraphMutationResponse(
            session_id=runtime.session_id,
            revision=runtime.revision,
            state=runtime.state,
            requires_recompile=requires_recompile,
            pipeline=[node.model_copy(deep=True) for node in runtime.pipeline],
        )

    @staticmethod
    def _session_info(runtime: RuntimeSession) -> SessionInfo:
        return SessionInfo(
            session_id=runtime.session_id,
            formula_id=runtime.formula_id,
            state=runtime.state,
            compile_mode=runtime.compile_mode,
            revision=runtime.revision,
            compiled_revision=runtime.compiled_revision,
            pending_changes=runtime.pending_changes,
            node_count=len(runtime.pipeline),
            edge_count=len(runtime.graph.edges),
            created_at=runtime.created_at,
        )

    async def _publish(self, session_id: str, event_type: str, payload: EventPayload) -> None:
        event = SessionEvent(session_id=session_id, type=event_type, payload=payload)
        await self._event_bus.publish(event)

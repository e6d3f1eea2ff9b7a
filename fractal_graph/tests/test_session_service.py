from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from fastapi import HTTPException

from fractal_graph.app.core.config import Settings
from fractal_graph.app.models.graph import BindingSlot, InputHandle, PipelineNode
from fractal_graph.app.models.session import (
    AddNodeRequest,
    CompileCompleteRequest,
    CompileMode,
    ConnectRequest,
    SaveSessionRequest,
    SessionCreateRequest,
    SessionEvent,
    SessionState,
    UpdateNodeRequest,
)
from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.services.event_bus import SessionEventBus
from fractal_graph.app.services.formula_service import FormulaService
from fractal_graph.app.services.node_registry import get_node_registry
from fractal_graph.app.services.preset_service import PresetService
from fractal_graph.app.services.session_service import SessionService
from fractal_graph.app.storage.db import Database
from fractal_graph.app.storage.repositories.formula_repository import FormulaRepository


def _service(
    tmp_path: Path,
    debounce: float = 0.0,
    param_mode: str = "uniform",
) -> tuple[SessionService, SessionEventBus]:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'sessions.db'}",
        compile_debounce_seconds=debounce,
        param_mode=param_mode,
    )
    database = Database(settings.database_url)
    database.create_all()
    registry = get_node_registry()
    compiler = CompilerService(registry, param_mode=settings.param_mode)
    event_bus = SessionEventBus()
    service = SessionService(
        settings=settings,
        registry=registry,
        formula_service=FormulaService(FormulaRepository(database.session), compiler),
        preset_service=PresetService(),
        compiler_service=compiler,
        event_bus=event_bus,
    )
    return service, event_bus


def _drain(queue: asyncio.Queue[SessionEvent]) -> list[SessionEvent]:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def _types(events: list[SessionEvent]) -> list[str]:
    return [event.type for event in events]


def test_manual_mode_waits_for_explicit_compile(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.MANUAL))
        queue = await bus.subscribe(info.session_id)

        response = await service.add_node(info.session_id, AddNodeRequest(type="Abs", id="abs-1"))
        await asyncio.sleep(0.01)

        assert response.requires_recompile is True
        assert response.state == SessionState.DIRTY
        assert _types(_drain(queue)) == ["graph_changed"]
        assert (await service.get_session(info.session_id)).pending_changes is True

        compiled = await service.compile_session(info.session_id)
        assert compiled.revision == 1
        assert "// Node: Abs (abs-1)" in compiled.source
        assert _types(_drain(queue)) == ["compile_requested"]

        done = await service.complete_compile(info.session_id, CompileCompleteRequest(revision=1))
        assert done.state == SessionState.COMPILED
        assert done.compiled_revision == 1
        assert done.pending_changes is False

    asyncio.run(scenario())


def test_auto_mode_collapses_bursts_into_one_compile(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path, debounce=0.05)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.AUTO))
        session_id = info.session_id
        await service.flush(session_id)
        await service.complete_compile(session_id, CompileCompleteRequest(revision=0))

        queue = await bus.subscribe(session_id)
        for index in range(3):
            await service.add_node(session_id, AddNodeRequest(type="Abs", id=f"abs-{index}"))
        await asyncio.sleep(0.2)

        requested = [event for event in _drain(queue) if event.type == "compile_requested"]
        assert len(requested) == 1
        assert requested[0].payload["revision"] == 3

    asyncio.run(scenario())


def test_edits_during_in_flight_compile_are_queued(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path, debounce=10.0)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.AUTO))
        session_id = info.session_id
        await service.flush(session_id)
        queue = await bus.subscribe(session_id)

        await service.add_node(session_id, AddNodeRequest(type="Abs", id="a"))
        await service.add_node(session_id, AddNodeRequest(type="Abs", id="b"))
        waiting = await service.flush(session_id)

        assert waiting.state == SessionState.DIRTY
        assert "compile_requested" not in _types(_drain(queue))

        with pytest.raises(HTTPException) as stale:
            await service.complete_compile(session_id, CompileCompleteRequest(revision=2))
        assert stale.value.status_code == 409

        after = await service.complete_compile(session_id, CompileCompleteRequest(revision=0))
        events = _drain(queue)

        assert _types(events) == ["compile_completed", "compile_requested"]
        assert events[1].payload["revision"] == 2
        assert after.state == SessionState.COMPILING
        assert after.compiled_revision == 0

    asyncio.run(scenario())


def test_param_only_edit_publishes_uniforms(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path)
        pipeline = [PipelineNode(id="s", type="Scale", params={"scale": 2.0})]
        info = await service.create_session(
            SessionCreateRequest(pipeline=pipeline, compile_mode=CompileMode.MANUAL)
        )
        await service.compile_session(info.session_id)
        queue = await bus.subscribe(info.session_id)

        response = await service.update_node(info.session_id, "s", UpdateNodeRequest(params={"scale": 3.5}))
        events = _drain(queue)

        assert response.requires_recompile is False
        assert _types(events) == ["graph_changed", "uniforms_updated"]
        assert events[1].payload["values"][0] == 3.5
        assert (await service.get_uniforms(info.session_id)).values[0] == 3.5

    asyncio.run(scenario())


def test_literal_mode_param_edit_requires_recompile(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path, param_mode="literal")
        pipeline = [PipelineNode(id="s1", type="Scale", params={"scale": 2.0})]
        info = await service.create_session(
            SessionCreateRequest(pipeline=pipeline, compile_mode=CompileMode.MANUAL)
        )
        first = await service.compile_session(info.session_id)
        await service.complete_compile(info.session_id, CompileCompleteRequest(revision=first.revision))
        queue = await bus.subscribe(info.session_id)

        response = await service.update_node(info.session_id, "s1", UpdateNodeRequest(params={"scale": 3.5}))
        session = await service.get_session(info.session_id)

        assert "v1_s1_p *= 2.0;" in first.source
        assert response.requires_recompile is True
        assert session.pending_changes is True
        assert session.state == SessionState.DIRTY
        assert _types(_drain(queue)) == ["graph_changed"]
        assert (await service.get_uniforms(info.session_id)).values == []

        second = await service.compile_session(info.session_id)
        assert "v1_s1_p *= 3.5;" in second.source
        assert "uModularParams" not in second.uniforms

    asyncio.run(scenario())


def test_binding_toggle_requires_recompile(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, _bus = _service(tmp_path)
        info = await service.create_session(
            SessionCreateRequest(
                pipeline=[PipelineNode(id="r", type="Rotate")],
                compile_mode=CompileMode.MANUAL,
            )
        )

        toggled = await service.toggle_binding(info.session_id, "r", "y")
        unbound = await service.set_binding(info.session_id, "r", "y", None)
        reserved = await service.set_binding(info.session_id, "r", "y", BindingSlot.F)

        assert toggled.requires_recompile is True
        assert toggled.pipeline[0].bindings == {"y": BindingSlot.A}
        assert unbound.pipeline[0].bindings == {}
        assert reserved.pipeline[0].bindings == {"y": BindingSlot.F}

    asyncio.run(scenario())


def test_rejected_cycle_publishes_event_and_keeps_revision(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path)
        info = await service.create_session(
            SessionCreateRequest(
                pipeline=[PipelineNode(id="a", type="Abs"), PipelineNode(id="b", type="Abs")],
                compile_mode=CompileMode.MANUAL,
            )
        )
        await service.disconnect(info.session_id, "e-root-start-a")
        queue = await bus.subscribe(info.session_id)

        result = await service.connect(info.session_id, ConnectRequest(source="b", target="a"))

        assert result.accepted is False
        assert result.revision == 1
        assert _types(_drain(queue)) == ["edge_rejected"]

    asyncio.run(scenario())


def test_rewiring_combiner_inputs_keeps_order_but_recompiles(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, _bus = _service(tmp_path)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.MANUAL))
        session_id = info.session_id
        for node_type, node_id in [("Sphere", "x"), ("Box", "y"), ("Union", "u")]:
            await service.add_node(session_id, AddNodeRequest(type=node_type, id=node_id))
        await service.connect(session_id, ConnectRequest(source="x", target="u", target_handle=InputHandle.A))
        await service.connect(session_id, ConnectRequest(source="y", target="u", target_handle=InputHandle.B))

        await service.disconnect(session_id, "e-x-u-a")
        await service.disconnect(session_id, "e-y-u-b")
        await service.connect(session_id, ConnectRequest(source="y", target="u", target_handle=InputHandle.A))
        swapped = await service.connect(
            session_id,
            ConnectRequest(source="x", target="u", target_handle=InputHandle.B),
        )

        assert [item.id for item in swapped.pipeline] == ["x", "y", "u"]
        assert swapped.requires_recompile is True

    asyncio.run(scenario())


def test_sessions_from_presets_and_saved_formulas(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, _bus = _service(tmp_path)
        from_preset = await service.create_session(
            SessionCreateRequest(preset="Menger Sponge", compile_mode=CompileMode.MANUAL)
        )
        pipeline = (await service.get_pipeline(from_preset.session_id)).pipeline
        assert [item.type for item in pipeline] == ["Abs", "MengerFold", "Rotate", "IFSScale"]

        saved = await service.save_session(from_preset.session_id, SaveSessionRequest(name="Sponge"))
        reopened = await service.create_session(
            SessionCreateRequest(formula_id=saved.id, compile_mode=CompileMode.MANUAL)
        )
        reopened_pipeline = (await service.get_pipeline(reopened.session_id)).pipeline

        assert reopened.formula_id == saved.id
        assert [item.model_dump() for item in reopened_pipeline] == [item.model_dump() for item in pipeline]

    asyncio.run(scenario())


def test_unknown_types_show_as_placeholders_and_fail_compile(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path)
        info = await service.create_session(
            SessionCreateRequest(
                pipeline=[PipelineNode(id="w", type="Warp")],
                compile_mode=CompileMode.MANUAL,
            )
        )
        queue = await bus.subscribe(info.session_id)

        graph = await service.get_graph(info.session_id)
        assert graph.preview[0].placeholder is True
        assert graph.preview[0].label == "Warp"

        with pytest.raises(HTTPException) as exc_info:
            await service.compile_session(info.session_id)

        assert exc_info.value.status_code == 422
        assert _types(_drain(queue)) == ["compile_failed"]
        assert (await service.get_session(info.session_id)).state == SessionState.ERROR

    asyncio.run(scenario())


def test_switching_to_manual_keeps_pending_changes(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path, debounce=10.0)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.AUTO))
        queue = await bus.subscribe(info.session_id)

        manual = await service.set_compile_mode(info.session_id, CompileMode.MANUAL)
        assert manual.pending_changes is True

        await service.set_compile_mode(info.session_id, CompileMode.AUTO)
        await service.flush(info.session_id)
        assert "compile_requested" in _types(_drain(queue))

    asyncio.run(scenario())


def test_delete_session(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path, debounce=10.0)
        info = await service.create_session(SessionCreateRequest())
        queue = await bus.subscribe(info.session_id)

        await service.delete_session(info.session_id)

        assert _types(_drain(queue)) == ["session_deleted"]
        with pytest.raises(HTTPException) as exc_info:
            await service.get_session(info.session_id)
        assert exc_info.value.status_code == 404

    asyncio.run(scenario())


def test_compile_request_without_shader_is_an_error(tmp_path: Path) -> None:
    async def scenario() -> None:
        service, bus = _service(tmp_path)
        info = await service.create_session(SessionCreateRequest(compile_mode=CompileMode.MANUAL))
        runtime = await service._get_session(info.session_id)
        queue = await bus.subscribe(info.session_id)

        with pytest.raises(RuntimeError, match="no compiled shader"):
            await service._publish_compile_requested(runtime)
        assert queue.empty()

    asyncio.run(scenario())

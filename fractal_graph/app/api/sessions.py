from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from fractal_graph.app.api.deps import get_container
from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.models.formula import FormulaResponse
from fractal_graph.app.models.session import (
    AddNodeRequest,
    CompileCompleteRequest,
    CompileModeRequest,
    CompileResponse,
    ConnectRequest,
    EdgeMutationResponse,
    GraphMutationResponse,
    PipelineResponse,
    SaveSessionRequest,
    SessionCreateRequest,
    SessionGraphResponse,
    SessionInfo,
    SetBindingRequest,
    UniformValuesResponse,
    UpdateNodeRequest,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionInfo, status_code=201)
async def create_session(
    request: SessionCreateRequest,
    container: AppContainer = Depends(get_container),
) -> SessionInfo:
    return await container.session_service.create_session(request)


@router.get("", response_model=list[SessionInfo])
async def list_sessions(container: AppContainer = Depends(get_container)) -> list[SessionInfo]:
    return await container.session_service.list_sessions()


@router.get("/{session_id}", response_model=SessionInfo)
async def get_session(session_id: str, container: AppContainer = Depends(get_container)) -> SessionInfo:
    return await container.session_service.get_session(session_id)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, container: AppContainer = Depends(get_container)) -> Response:
    await container.session_service.delete_session(session_id)
    return Response(status_code=204)


@router.get("/{session_id}/graph", response_model=SessionGraphResponse)
async def get_graph(session_id: str, container: AppContainer = Depends(get_container)) -> SessionGraphResponse:
    return await container.session_service.get_graph(session_id)


@router.get("/{session_id}/pipeline", response_model=PipelineResponse)
async def get_pipeline(session_id: str, container: AppContainer = Depends(get_container)) -> PipelineResponse:
    return await container.session_service.get_pipeline(session_id)


@router.post("/{session_id}/nodes", response_model=GraphMutationResponse, status_code=201)
async def add_node(
    session_id: str,
    request: AddNodeRequest,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.add_node(session_id, request)


@router.patch("/{session_id}/nodes/{node_id}", response_model=GraphMutationResponse)
async def update_node(
    session_id: str,
    node_id: str,
    request: UpdateNodeRequest,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.update_node(session_id, node_id, request)


@router.delete("/{session_id}/nodes/{node_id}", response_model=GraphMutationResponse)
async def remove_node(
    session_id: str,
    node_id: str,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.remove_node(session_id, node_id)


@router.post("/{session_id}/nodes/{node_id}/bindings/{input_id}/toggle", response_model=GraphMutationResponse)
async def toggle_binding(
    session_id: str,
    node_id: str,
    input_id: str,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.toggle_binding(session_id, node_id, input_id)


@router.put("/{session_id}/nodes/{node_id}/bindings/{input_id}", response_model=GraphMutationResponse)
async def set_binding(
    session_id: str,
    node_id: str,
    input_id: str,
    request: SetBindingRequest,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.set_binding(session_id, node_id, input_id, request.slot)


@router.post("/{session_id}/edges", response_model=EdgeMutationResponse)
async def connect(
    session_id: str,
    request: ConnectRequest,
    container: AppContainer = Depends(get_container),
) -> EdgeMutationResponse:
    return await container.session_service.connect(session_id, request)


@router.delete("/{session_id}/edges/{edge_id}", response_model=GraphMutationResponse)
async def disconnect(
    session_id: str,
    edge_id: str,
    container: AppContainer = Depends(get_container),
) -> GraphMutationResponse:
    return await container.session_service.disconnect(session_id, edge_id)


@router.put("/{session_id}/compile-mode", response_model=SessionInfo)
async def set_compile_mode(
    session_id: str,
    request: CompileModeRequest,
    container: AppContainer = Depends(get_container),
) -> SessionInfo:
    return await container.session_service.set_compile_mode(session_id, request.compile_mode)


@router.post("/{session_id}/compile", response_model=CompileResponse)
async def compile_session(session_id: str, container: AppContainer = Depends(get_container)) -> CompileResponse:
    return await container.session_service.compile_session(session_id)


@router.get("/{session_id}/shader", response_model=CompileResponse)
async def get_shader(session_id: str, container: AppContainer = Depends(get_container)) -> CompileResponse:
    return await container.session_service.get_artifact(session_id)


@router.post("/{session_id}/compile-complete", response_model=SessionInfo)
async def compile_complete(
    session_id: str,
    request: CompileCompleteRequest,
    container: AppContainer = Depends(get_container),
) -> SessionInfo:
    return await container.session_service.complete_compile(session_id, request)


@router.get("/{session_id}/uniforms", response_model=UniformValuesResponse)
async def get_uniforms(session_id: str, container: AppContainer = Depends(get_container)) -> UniformValuesResponse:
    return await container.session_service.get_uniforms(session_id)


@router.post("/{session_id}/save", response_model=FormulaResponse, status_code=201)
async def save_session(
    session_id: str,
    request: SaveSessionRequest,
    container: AppContainer = Depends(get_container),
) -> FormulaResponse:
    return await container.session_service.save_session(session_id, request)

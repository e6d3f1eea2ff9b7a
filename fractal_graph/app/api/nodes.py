from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from fractal_graph.app.api.deps import get_container
from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.models.node_definition import NodeDefinition

router = APIRouter(prefix="/nodes", tags=["nodes"])


@router.get("", response_model=list[NodeDefinition])
async def list_nodes(
    category: str | None = Query(default=None),
    container: AppContainer = Depends(get_container),
) -> list[NodeDefinition]:
    return container.node_registry.list_definitions(category)


@router.get("/categories")
async def list_categories(container: AppContainer = Depends(get_container)) -> dict[str, int]:
    return container.node_registry.categories()


@router.get("/{node_type}", response_model=NodeDefinition)
async def get_node(node_type: str, container: AppContainer = Depends(get_container)) -> NodeDefinition:
    definition = container.node_registry.get(node_type)
    if not definition:
        raise HTTPException(status_code=404, detail=f"Node type '{node_type}' not found")
    return definition

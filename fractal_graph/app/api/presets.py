from __future__ import annotations

from fastapi import APIRouter, Depends

from fractal_graph.app.api.deps import get_container
from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.models.formula import ModularPreset

router = APIRouter(prefix="/presets", tags=["presets"])


@router.get("", response_model=list[ModularPreset])
async def list_presets(container: AppContainer = Depends(get_container)) -> list[ModularPreset]:
    return container.preset_service.list_presets()


@router.get("/{name}", response_model=ModularPreset)
async def get_preset(name: str, container: AppContainer = Depends(get_container)) -> ModularPreset:
    return container.preset_service.get_preset(name)

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from fractal_graph.app.api.deps import get_container
from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.models.formula import (
    FormulaCompileResponse,
    FormulaCreateRequest,
    FormulaListItem,
    FormulaResponse,
    FormulaUpdateRequest,
)

router = APIRouter(prefix="/formulas", tags=["formulas"])


@router.post("", response_model=FormulaResponse, status_code=201)
async def create_formula(
    request: FormulaCreateRequest,
    container: AppContainer = Depends(get_container),
) -> FormulaResponse:
    return container.formula_service.create_formula(request)


@router.get("", response_model=list[FormulaListItem])
async def list_formulas(container: AppContainer = Depends(get_container)) -> list[FormulaListItem]:
    return container.formula_service.list_formulas()


@router.get("/{formula_id}", response_model=FormulaResponse)
async def get_formula(formula_id: str, container: AppContainer = Depends(get_container)) -> FormulaResponse:
    return container.formula_service.get_formula(formula_id)


@router.put("/{formula_id}", response_model=FormulaResponse)
async def update_formula(
    formula_id: str,
    request: FormulaUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> FormulaResponse:
    return container.formula_service.update_formula(formula_id, request)


@router.delete("/{formula_id}", status_code=204)
async def delete_formula(formula_id: str, container: AppContainer = Depends(get_container)) -> Response:
    container.formula_service.delete_formula(formula_id)
    return Response(status_code=204)


@router.post("/{formula_id}/compile", response_model=FormulaCompileResponse)
async def compile_formula(formula_id: str, container: AppContainer = Depends(get_container)) -> FormulaCompileResponse:
    return container.formula_service.compile_formula(formula_id)

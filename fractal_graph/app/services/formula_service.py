from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import HTTPException

from fractal_graph.app.models.formula import (
    FormulaCompileResponse,
    FormulaCreateRequest,
    FormulaDocument,
    FormulaListItem,
    FormulaResponse,
    FormulaUpdateRequest,
)
from fractal_graph.app.services.compile_errors import CompilationError
from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.storage.repositories.formula_repository import FormulaRepository

logger = logging.getLogger(__name__)


class FormulaService:
    def __init__(self, repository: FormulaRepository, compiler_service: CompilerService):
        self._repository = repository
        self._compiler_service = compiler_service

    def create_formula(self, request: FormulaCreateRequest) -> FormulaResponse:
        now = datetime.now(timezone.utc)
        document = FormulaDocument(
            id=str(uuid4()),
            name=request.name,
            description=request.description,
            schema_version=request.schema_version,
            pipeline=request.pipeline,
            created_at=now,
            updated_at=now,
        )
        self._repository.create(document)
        logger.info("Stored formula '%s' (%s) with %d nodes", document.name, document.id, len(document.pipeline))
        return FormulaResponse.model_validate(document.model_dump())

    def get_formula(self, formula_id: str) -> FormulaResponse:
        return FormulaResponse.model_validate(self.get_formula_document(formula_id).model_dump())

    def get_formula_document(self, formula_id: str) -> FormulaDocument:
        document = self._repository.get(formula_id)
        if not document:
            raise HTTPException(status_code=404, detail=f"Formula '{formula_id}' not found")
        return document

    def list_formulas(self) -> list[FormulaListItem]:
        documents = self._repository.list()
        return [
            FormulaListItem(
                id=document.id,
                name=document.name,
                description=document.description,
                schema_version=document.schema_version,
                node_count=len(document.pipeline),
                updated_at=document.updated_at,
            )
            for document in documents
        ]

    def update_formula(self, formula_id: str, request: FormulaUpdateRequest) -> FormulaResponse:
        existing = self.get_formula_document(formula_id)

        updated = FormulaDocument(
            id=existing.id,
            name=request.name if request.name is not None else existing.name,
            description=request.description if request.description is not None else existing.description,
            schema_version=request.schema_version if request.schema_version is not None else existing.schema_version,
            pipeline=request.pipeline if request.pipeline is not None else existing.pipeline,
            created_at=existing.created_at,
            updated_at=datetime.now(timezone.utc),
        )

        persisted = self._repository.update(formula_id, updated)
        if not persisted:
            raise HTTPException(status_code=404, detail=f"Formula '{formula_id}' not found")

        return FormulaResponse.model_validate(persisted.model_dump())

    def delete_formula(self, formula_id: str) -> None:
        deleted = self._repository.delete(formula_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Formula '{formula_id}' not found")

    def compile_formula(self, formula_id: str) -> FormulaCompileResponse:
        document = self.get_formula_document(formula_id)
        try:
            artifact = self._compiler_service.emit(document.pipeline)
            uniform_values = self._compiler_service.pack_uniforms(document.pipeline)
        except CompilationError as error:
            raise HTTPException(status_code=422, detail={"diagnostics": error.diagnostics}) from error

        return FormulaCompileResponse(
            formula_id=document.id,
            source=artifact.source,
            uniforms=artifact.uniforms,
            uniform_block=artifact.uniform_block,
            param_slots=artifact.param_slots,
            uniform_values=uniform_values.tolist(),
            diagnostics=artifact.diagnostics,
        )

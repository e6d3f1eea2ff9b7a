from __future__ import annotations

import json
from datetime import timezone
from typing import Sequence

from pydantic import TypeAdapter
from sqlalchemy import desc, select

from fractal_graph.app.models.formula import FormulaDocument
from fractal_graph.app.models.graph import PipelineNode
from fractal_graph.app.storage.db import FormulaRecord

_PIPELINE_ADAPTER = TypeAdapter(list[PipelineNode])


class FormulaRepository:
    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def create(self, document: FormulaDocument) -> FormulaDocument:
        with self._db_session_factory() as db:
            record = FormulaRecord(
                id=document.id,
                name=document.name,
                description=document.description,
                schema_version=document.schema_version,
                pipeline_json=self._dump_pipeline(document.pipeline),
                created_at=document.created_at,
                updated_at=document.updated_at,
            )
            db.add(record)
        return document

    def get(self, formula_id: str) -> FormulaDocument | None:
        with self._db_session_factory() as db:
            record = db.get(FormulaRecord, formula_id)
            if not record:
                return None
            return self._to_document(record)

    def list(self) -> Sequence[FormulaDocument]:
        with self._db_session_factory() as db:
            stmt = select(FormulaRecord).order_by(desc(FormulaRecord.updated_at))
            return [self._to_document(record) for record in db.scalars(stmt).all()]

    def update(self, formula_id: str, document: FormulaDocument) -> FormulaDocument | None:
        with self._db_session_factory() as db:
            record = db.get(FormulaRecord, formula_id)
            if not record:
                return None

            record.name = document.name
            record.description = document.description
            record.schema_version = document.schema_version
            record.pipeline_json = self._dump_pipeline(document.pipeline)
            record.updated_at = document.updated_at
            db.add(record)

            return self._to_document(record)

    def delete(self, formula_id: str) -> bool:
        with self._db_session_factory() as db:
            record = db.get(FormulaRecord, formula_id)
            if not record:
                return False
            db.delete(record)
        return True

    @staticmethod
    def _dump_pipeline(pipeline: list[PipelineNode]) -> str:
        return _PIPELINE_ADAPTER.dump_json(pipeline).decode("utf-8")

    @staticmethod
    def _to_document(record: FormulaRecord) -> FormulaDocument:
        created_at = record.created_at
        updated_at = record.updated_at

        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return FormulaDocument(
            id=record.id,
            name=record.name,
            description=record.description,
            schema_version=record.schema_version,
            pipeline=_PIPELINE_ADAPTER.validate_python(json.loads(record.pipeline_json)),
            created_at=created_at,
            updated_at=updated_at,
        )

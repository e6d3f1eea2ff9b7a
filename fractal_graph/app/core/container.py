from __future__ import annotations

from dataclasses import dataclass

from fractal_graph.app.core.config import Settings
from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.services.event_bus import SessionEventBus
from fractal_graph.app.services.formula_service import FormulaService
from fractal_graph.app.services.node_registry import NodeRegistry
from fractal_graph.app.services.preset_service import PresetService
from fractal_graph.app.services.session_service import SessionService
from fractal_graph.app.storage.db import Database
from fractal_graph.app.storage.repositories.formula_repository import FormulaRepository


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    database: Database
    formula_repository: FormulaRepository
    node_registry: NodeRegistry
    preset_service: PresetService
    compiler_service: CompilerService
    formula_service: FormulaService
    event_bus: SessionEventBus
    session_service: SessionService

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fractal_graph.app.api import formulas, nodes, presets, sessions, ws
from fractal_graph.app.core.config import Settings, get_settings
from fractal_graph.app.core.container import AppContainer
from fractal_graph.app.core.logging import configure_logging
from fractal_graph.app.services.compiler_service import CompilerService
from fractal_graph.app.services.event_bus import SessionEventBus
from fractal_graph.app.services.formula_service import FormulaService
from fractal_graph.app.services.node_registry import get_node_registry
from fractal_graph.app.services.preset_service import PresetService
from fractal_graph.app.services.session_service import SessionService
from fractal_graph.app.storage.db import Database
from fractal_graph.app.storage.repositories.formula_repository import FormulaRepository

logger = logging.getLogger(__name__)


def _build_container(settings: Settings) -> AppContainer:
    if settings.database_url.startswith("sqlite:///"):
        db_path = Path(settings.database_url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    database = Database(settings.database_url)
    database.create_all()

    formula_repository = FormulaRepository(database.session)
    node_registry = get_node_registry()
    preset_service = PresetService()
    compiler_service = CompilerService(
        registry=node_registry,
        max_modular_params=settings.max_modular_params,
        param_mode=settings.param_mode,
    )
    formula_service = FormulaService(repository=formula_repository, compiler_service=compiler_service)
    event_bus = SessionEventBus()
    session_service = SessionService(
        settings=settings,
        registry=node_registry,
        formula_service=formula_service,
        preset_service=preset_service,
        compiler_service=compiler_service,
        event_bus=event_bus,
    )

    return AppContainer(
        settings=settings,
        database=database,
        formula_repository=formula_repository,
        node_registry=node_registry,
        preset_service=preset_service,
        compiler_service=compiler_service,
        formula_service=formula_service,
        event_bus=event_bus,
        session_service=session_service,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.debug)

    container = _build_container(settings)
    app.state.container = container
    logger.info(
        "Loaded %d node types; compile mode '%s', parameter mode '%s'",
        len(container.node_registry.list_definitions()),
        settings.default_compile_mode,
        settings.param_mode,
    )
    try:
        yield
    finally:
        await container.session_service.shutdown()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(nodes.router, prefix=settings.api_prefix)
    app.include_router(presets.router, prefix=settings.api_prefix)
    app.include_router(formulas.router, prefix=settings.api_prefix)
    app.include_router(sessions.router, prefix=settings.api_prefix)
    app.include_router(ws.router)

    @app.get(f"{settings.api_prefix}/health")
    async def health() -> dict[str, str | int]:
        return {
            "status": "ok",
            "param_mode": settings.param_mode,
            "max_modular_params": settings.max_modular_params,
            "default_compile_mode": settings.default_compile_mode,
        }

    return app


app = create_app()


def run() -> None:
    parser = argparse.ArgumentParser(description="Run the fractal graph formula service")
    parser.add_argument(
        "--param-mode",
        choices=("uniform", "literal"),
        default=None,
        help="Render unbound parameters as uniform slots or as inline literals.",
    )
    parser.add_argument(
        "--compile-mode",
        choices=("auto", "manual"),
        default=None,
        help="Default compile mode for new editing sessions.",
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    parser.add_argument("--reload", action=argparse.BooleanOptionalAction, default=False)
    parser.add_argument("--access-log", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--debug", action=argparse.BooleanOptionalAction, default=None)
    args = parser.parse_args()

    if args.param_mode is not None:
        os.environ["FRACTALGRAPH_PARAM_MODE"] = args.param_mode
    if args.compile_mode is not None:
        os.environ["FRACTALGRAPH_DEFAULT_COMPILE_MODE"] = args.compile_mode
    if args.debug is True:
        os.environ["FRACTALGRAPH_DEBUG"] = "1"
    elif args.debug is False:
        os.environ["FRACTALGRAPH_DEBUG"] = "0"

    get_settings.cache_clear()
    globals()["app"] = create_app()

    uvicorn.run(
        "fractal_graph.app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        access_log=args.access_log,
    )


if __name__ == "__main__":
    run()

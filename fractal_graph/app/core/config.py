from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FRACTALGRAPH_", extra="ignore")

    app_name: str = "Fractal Graph API"
    app_version: str = "0.1.0"
    debug: bool = False

    api_prefix: str = "/api"

    database_url: str = Field(
        default_factory=lambda: f"sqlite:///{Path(__file__).resolve().parents[2] / 'data' / 'fractal_graph.db'}"
    )

    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    compile_debounce_seconds: float = Field(default=0.3, ge=0.0)
    max_modular_params: int = Field(default=64, ge=1, le=1_024)
    param_mode: Literal["uniform", "literal"] = "uniform"
    default_compile_mode: Literal["auto", "manual"] = "auto"


@lru_cache
def get_settings() -> Settings:
    return Settings()

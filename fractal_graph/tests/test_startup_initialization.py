from __future__ import annotations

import sqlite3
from pathlib import Path

from fastapi.testclient import TestClient

from fractal_graph.app.core.config import get_settings
from fractal_graph.app.main import create_app


def test_startup_initializes_missing_sqlite_db_file_and_parent_dir(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "fractal_graph" / "data" / "fractal_graph.db"

    assert not db_path.parent.exists()
    assert not db_path.exists()

    monkeypatch.setenv("FRACTALGRAPH_DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()

    app = create_app()
    with TestClient(app) as client:
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["max_modular_params"] == 64

    assert db_path.exists()
    assert db_path.parent.exists()

    with sqlite3.connect(db_path) as connection:
        table_names = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }

    assert "formulas" in table_names

    get_settings.cache_clear()


def test_startup_honours_literal_param_mode(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("FRACTALGRAPH_DATABASE_URL", f"sqlite:///{tmp_path / 'literal.db'}")
    monkeypatch.setenv("FRACTALGRAPH_PARAM_MODE", "literal")
    get_settings.cache_clear()

    with TestClient(create_app()) as client:
        assert client.get("/api/health").json()["param_mode"] == "literal"
        formula_id = client.post(
            "/api/formulas",
            json={"name": "Scaled", "pipeline": [{"id": "s", "type": "Scale", "params": {"scale": 1.5}}]},
        ).json()["id"]
        source = client.post(f"/api/formulas/{formula_id}/compile").json()["source"]

    assert "v1_s_p *= 1.5;" in source
    assert "uModularParams" not in source

    get_settings.cache_clear()

from __future__ import annotations

from fastapi.testclient import TestClient

from autoplot.api.server import MAX_FORMULA_LENGTH, MAX_ROWS, app
from autoplot.engine.errors import EmptyDataset


client = TestClient(app)


def _rows() -> list[dict]:
    return [{"x": float(i), "y": float(i * i % 17), "g": "abc"[i % 3]} for i in range(60)]


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_plot_spec_returns_archetype() -> None:
    response = client.post("/plot-spec", json={"formula": "y ~ x", "rows": _rows()})

    assert response.status_code == 200
    body = response.json()
    assert body["request_id"].startswith("ap-")
    assert body["plot_spec"]["archetype"] == "scatter"
    assert body["plot_spec"]["formula"]["response"] == "y"


def test_plot_spec_accepts_structured_formula() -> None:
    payload = {"formula": {"response": "y", "explanatory": ["g"]}, "rows": _rows()}

    response = client.post("/plot-spec", json=payload)

    assert response.status_code == 200
    assert response.json()["plot_spec"]["archetype"] == "violin"


def test_plot_spec_rejects_large_rows() -> None:
    payload = {"formula": "~ x", "rows": [{"x": i} for i in range(MAX_ROWS + 1)]}

    response = client.post("/plot-spec", json=payload)

    assert response.status_code == 413
    assert response.json()["detail"]["code"] == "ROWS_LIMIT_EXCEEDED"


def test_plot_spec_rejects_long_formula() -> None:
    payload = {"formula": "y ~ " + "x" * MAX_FORMULA_LENGTH, "rows": _rows()}

    response = client.post("/plot-spec", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "FORMULA_TOO_LONG"


def test_invalid_formula_reports_stage_and_columns() -> None:
    response = client.post("/plot-spec", json={"formula": "y ~ nope", "rows": _rows()})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "INVALID_FORMULA"
    assert detail["stage"] == "formula"
    assert "nope" in detail["columns"]


def test_unknown_option_is_rejected() -> None:
    payload = {"formula": "y ~ x", "rows": _rows(), "options": {"no_such_option": 1}}

    response = client.post("/plot-spec", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INVALID_OPTIONS"


def test_engine_errors_map_to_422(monkeypatch) -> None:
    def _fake_build_plot_spec(df, formula, *, weights=None, options=None):
        raise EmptyDataset("no rows with positive weight remain", stage="complete_cases", columns=["x"])

    monkeypatch.setattr("autoplot.api.server.build_plot_spec", _fake_build_plot_spec)

    response = client.post("/plot-spec", json={"formula": "~ x", "rows": _rows()})

    assert response.status_code == 422
    assert response.json()["detail"] == {
        "code": "EMPTY_DATASET",
        "message": "no rows with positive weight remain",
        "stage": "complete_cases",
        "columns": ["x"],
    }


def test_render_returns_figure_json() -> None:
    rows = _rows()
    for row in rows:
        row["w"] = 1.0 + (row["x"] % 4)

    response = client.post("/render", json={"formula": "y ~ x", "rows": rows, "weights": "w"})

    assert response.status_code == 200
    body = response.json()
    assert body["render_engine"] == "plotly"
    assert body["figure_json"]["data"]
    assert body["plot_spec"]["weighted"] is True
    assert "archetype=scatter" in body["code"]

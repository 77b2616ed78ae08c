from __future__ import annotations

import math
import os
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from autoplot.engine.emitter import build_plot_spec
from autoplot.engine.errors import AutoplotError
from autoplot.models.plot_spec import PlotSpec
from autoplot.render.plotly_renderer import render_figure
from autoplot.utils.logging import log_event, new_request_id

load_dotenv()

app = FastAPI(title="Autoplot Engine API")

origins = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


MAX_ROWS = _env_int("AUTOPLOT_MAX_ROWS", 200000, minimum=1)
MAX_FORMULA_LENGTH = _env_int("AUTOPLOT_MAX_FORMULA_LENGTH", 512, minimum=1)


class PlotRequest(BaseModel):
    formula: Union[str, Dict[str, Any]]
    rows: List[Dict[str, Any]]
    # 가중치 컬럼 이름 (없으면 모든 행 가중치 1)
    weights: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class PlotSpecResponse(BaseModel):
    request_id: str
    plot_spec: PlotSpec


class RenderResponse(BaseModel):
    request_id: str
    plot_spec: PlotSpec
    figure_json: Optional[Dict[str, Any]] = None
    code: Optional[str] = None
    render_engine: Optional[str] = None


def _sanitize_non_finite(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        numeric = float(value)
        return value if math.isfinite(numeric) else None
    if isinstance(value, dict):
        return {str(k): _sanitize_non_finite(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_non_finite(item) for item in value]
    return value


def _validate_payload(req: PlotRequest) -> None:
    if len(req.rows) > MAX_ROWS:
        raise HTTPException(
            status_code=413,
            detail={"code": "ROWS_LIMIT_EXCEEDED", "message": f"rows size must be <= {MAX_ROWS}"},
        )
    if isinstance(req.formula, str) and len(req.formula) > MAX_FORMULA_LENGTH:
        raise HTTPException(
            status_code=422,
            detail={"code": "FORMULA_TOO_LONG", "message": f"formula length must be <= {MAX_FORMULA_LENGTH}"},
        )


def _build(req: PlotRequest, request_id: str) -> tuple[PlotSpec, pd.DataFrame]:
    _validate_payload(req)
    df = pd.DataFrame(req.rows)
    log_event(
        "request.plot_spec",
        {
            "request_id": request_id,
            "row_count": len(req.rows),
            "column_count": len(df.columns),
            "weighted": req.weights is not None,
        },
    )
    try:
        spec = build_plot_spec(df, req.formula, weights=req.weights, options=req.options or None)
    except AutoplotError as exc:
        log_event("request.plot_spec.error", {"request_id": request_id, **exc.to_dict()}, level="warning")
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc
    except ValidationError as exc:
        # 알 수 없는 옵션 키 / 범위 밖 옵션 값
        log_event("request.plot_spec.invalid_options", {"request_id": request_id, "error": str(exc)}, level="warning")
        raise HTTPException(
            status_code=422,
            detail={"code": "INVALID_OPTIONS", "message": str(exc)},
        ) from exc
    return spec, df


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}


@app.post("/plot-spec", response_model=PlotSpecResponse)
def plot_spec(req: PlotRequest) -> PlotSpecResponse:
    request_id = new_request_id()
    spec, _ = _build(req, request_id)
    return PlotSpecResponse(request_id=request_id, plot_spec=spec)


@app.post("/render", response_model=RenderResponse)
def render(req: PlotRequest) -> RenderResponse:
    request_id = new_request_id()
    spec, df = _build(req, request_id)
    rendered = render_figure(spec, df, weights=req.weights)
    figure_json = _sanitize_non_finite(rendered.get("figure_json"))
    return RenderResponse(
        request_id=request_id,
        plot_spec=spec,
        figure_json=figure_json,
        code=rendered.get("code"),
        render_engine=rendered.get("render_engine"),
    )

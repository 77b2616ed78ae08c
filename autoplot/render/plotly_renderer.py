"""PlotSpec -> Plotly figure 렌더링 어댑터.

- 엔진이 결정한 PlotSpec을 그대로 따른다 (여기서 차트 종류를 다시 고르지 않음).
- 결과는 figure JSON 형태로 반환한다.
"""
from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import plotly.io as pio
from plotly.subplots import make_subplots

from autoplot.engine.axis_transform import apply_transform
from autoplot.engine.dataset import Dataset, WeightsArg, numeric_values, weighted_median
from autoplot.engine.discretizer import assign_bins, equal_weight_edges
from autoplot.engine.overplot import COUNT_COLUMN, WEIGHT_COLUMN, collapse_duplicates, jitter_offsets
from autoplot.engine.sampler import sample_positions
from autoplot.models.plot_spec import (
    WEIGHT_CHANNEL,
    AxisTransform,
    PlotArchetype,
    PlotSpec,
    RemedyKind,
)
from autoplot.utils.logging import log_event

_DEFAULT_TEMPLATE = str(os.getenv("AUTOPLOT_PLOT_TEMPLATE", "plotly_white")).strip() or "plotly_white"
_MEDIAN_LINE_COLOR = "#be123c"
_SMOOTH_LINE_COLOR = "#0f766e"
_SEQUENTIAL_SCALE = "YlGnBu"


def _resolve_template_name() -> str:
    if _DEFAULT_TEMPLATE in pio.templates:
        return _DEFAULT_TEMPLATE
    return "plotly_white"


def _build_code(spec: PlotSpec) -> str:
    # 시각화 코드를 문자열로 반환(로그/디버깅용)
    channels = spec.channels
    transforms = {a.column: a.transform.value for a in spec.axes if a.transform is not AxisTransform.NONE}
    return (
        "# plotly 코드(요약)\n"
        f"# archetype={spec.archetype.value}, fallback_from={spec.fallback_from.value if spec.fallback_from else None}, "
        f"x={channels.x}, y={channels.y}, color={channels.color}, size={channels.size}, "
        f"facet_row={channels.facet_row}, facet_col={channels.facet_col}, orientation={channels.orientation}, "
        f"transforms={transforms}\n"
    )


def _column(value: Optional[str]) -> Optional[str]:
    if value == WEIGHT_CHANNEL:
        return WEIGHT_COLUMN
    return value


# 입력: PlotSpec, 원본 DataFrame, weights
# 출력: 렌더링용 DataFrame (엔진과 같은 표본/결측 제거, 범주는 문자열 라벨)
def _prepare_frame(spec: PlotSpec, df: pd.DataFrame, weights: WeightsArg) -> pd.DataFrame:
    dataset = Dataset.from_frame(df, weights)
    if spec.sampling.sampled and dataset.n_rows > spec.sampling.kept_rows:
        rng = np.random.default_rng(spec.sampling.seed)
        dataset = dataset.take(sample_positions(dataset.n_rows, spec.sampling.kept_rows, rng))
    columns = list(spec.formula.columns)
    dataset = dataset.complete_cases(columns)

    frame = dataset.frame[columns].copy()
    frame[WEIGHT_COLUMN] = dataset.weight_array()
    for axis in spec.axes:
        if axis.discretization is not None:
            disc = axis.discretization
            codes = np.clip(assign_bins(numeric_values(frame[axis.column]), disc.edges), 0, len(disc.labels) - 1)
            frame[axis.column] = np.asarray(disc.labels, dtype=object)[codes]
        elif axis.kind.is_categorical:
            frame[axis.column] = frame[axis.column].astype(str)
        elif axis.transform is AxisTransform.LOG_MODULUS:
            frame[axis.column] = apply_transform(numeric_values(frame[axis.column]), axis.transform)

    facet = spec.facet
    if facet is not None and facet.other_label is not None:
        labels = frame[facet.column].astype(str)
        frame[facet.column] = labels.where(labels.isin(facet.levels), facet.other_label)
    return frame


def _category_orders(spec: PlotSpec) -> Dict[str, List[str]]:
    orders = {order.column: list(order.levels) for order in spec.level_orders}
    if spec.facet is not None:
        orders[spec.facet.column] = list(spec.facet.levels)
    return orders


def _facet_kwargs(spec: PlotSpec) -> Dict[str, Any]:
    channels = spec.channels
    kwargs: Dict[str, Any] = {}
    if channels.facet_row:
        kwargs["facet_row"] = channels.facet_row
    if channels.facet_col:
        kwargs["facet_col"] = channels.facet_col
        if spec.facet is not None and spec.facet.rows > 1:
            kwargs["facet_col_wrap"] = spec.facet.cols
    return kwargs


def _apply_log_axes(fig: go.Figure, spec: PlotSpec) -> None:
    for axis in spec.axes:
        if axis.channel not in ("x", "y"):
            continue
        if axis.transform is AxisTransform.LOG:
            if axis.channel == "x":
                fig.update_xaxes(type="log")
            else:
                fig.update_yaxes(type="log")
        elif axis.transform is AxisTransform.LOG_MODULUS:
            title = f"log-modulus({axis.column})"
            if axis.channel == "x":
                fig.update_xaxes(title_text=title)
            else:
                fig.update_yaxes(title_text=title)


def _weighted_levels(frame: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    return frame.groupby(columns, sort=False, as_index=False)[WEIGHT_COLUMN].sum()


def _density(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    x = spec.channels.x
    fig = px.histogram(
        frame,
        x=x,
        y=WEIGHT_COLUMN,
        histfunc="sum",
        histnorm=spec.decorations.defaults.get("histnorm", "probability density"),
        color=spec.channels.color,
        marginal="rug" if spec.decorations.rug else None,
        category_orders=_category_orders(spec),
        **_facet_kwargs(spec),
    )
    if spec.decorations.median_line:
        median = weighted_median(numeric_values(frame[x]), frame[WEIGHT_COLUMN].to_numpy(dtype=float))
        fig.add_vline(x=median, line_dash="dash", line_color=_MEDIAN_LINE_COLOR)
    return fig


def _dot_or_bar(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    channels = spec.channels
    x = _column(channels.x)
    y = _column(channels.y)
    orders = _category_orders(spec)
    if WEIGHT_COLUMN not in (x, y):
        # 범주별 관측이 하나뿐인 수치형: 값 그대로 막대로 그린다
        return px.bar(
            frame,
            x=x,
            y=y,
            color=channels.color,
            orientation=channels.orientation,
            category_orders=orders,
            **_facet_kwargs(spec),
        )

    group_cols = [c for c in (x, y, channels.color, channels.facet_row, channels.facet_col) if c and c != WEIGHT_COLUMN]
    agg = _weighted_levels(frame, list(dict.fromkeys(group_cols)))
    if spec.archetype is PlotArchetype.DOT_CHART:
        fig = px.scatter(agg, x=x, y=y, color=channels.color, category_orders=orders, **_facet_kwargs(spec))
        fig.update_traces(marker=dict(size=9))
        return fig
    return px.bar(agg, x=x, y=y, color=channels.color, category_orders=orders, **_facet_kwargs(spec))


def _smooth_line(frame: pd.DataFrame, x: str, y: str, n_bins: int) -> Optional[go.Scatter]:
    xs = numeric_values(frame[x])
    ys = numeric_values(frame[y])
    w = frame[WEIGHT_COLUMN].to_numpy(dtype=float)
    if xs.size == 0 or float(w.sum()) <= 0:
        return None
    edges = equal_weight_edges(xs, w, n_bins)
    codes = assign_bins(xs, edges)
    points_x: List[float] = []
    points_y: List[float] = []
    for code in np.unique(codes):
        mask = (codes == code) & (w > 0)
        if not mask.any():
            continue
        points_x.append(weighted_median(xs[mask], w[mask]))
        points_y.append(weighted_median(ys[mask], w[mask]))
    if len(points_x) < 2:
        return None
    return go.Scatter(
        x=points_x,
        y=points_y,
        mode="lines",
        name="median trend",
        line=dict(color=_SMOOTH_LINE_COLOR, width=2),
    )


def _scatter(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    channels = spec.channels
    x = channels.x
    y = channels.y
    remedy = spec.overplot
    kwargs: Dict[str, Any] = {
        "color": channels.color,
        "category_orders": _category_orders(spec),
        **_facet_kwargs(spec),
    }
    plot_df = frame
    if remedy is not None and remedy.kind is RemedyKind.SIZE:
        group_cols = [c for c in (channels.color, channels.facet_row, channels.facet_col) if c]
        if group_cols:
            plot_df = frame.groupby([x, y, *group_cols], sort=False, as_index=False)[WEIGHT_COLUMN].sum()
        else:
            plot_df = collapse_duplicates(Dataset(frame=frame[[x, y]], weights=frame[WEIGHT_COLUMN]), x, y)
        kwargs["size"] = WEIGHT_COLUMN
        kwargs["opacity"] = remedy.opacity
    elif remedy is not None and remedy.kind is RemedyKind.JITTER:
        rng = np.random.default_rng(remedy.seed)
        plot_df = frame.copy()
        plot_df[x] = numeric_values(plot_df[x]) + jitter_offsets(len(plot_df), remedy.jitter_width_x or 0.0, rng)
        plot_df[y] = numeric_values(plot_df[y]) + jitter_offsets(len(plot_df), remedy.jitter_width_y or 0.0, rng)

    fig = px.scatter(plot_df, x=x, y=y, hover_data=[COUNT_COLUMN] if COUNT_COLUMN in plot_df.columns else None, **kwargs)
    if spec.decorations.smooth:
        line = _smooth_line(frame, x, y, int(spec.decorations.defaults.get("smooth_bins", 10)))
        if line is not None:
            fig.add_trace(line)
    return fig


def _hexbin(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    gridsize = int(spec.decorations.defaults.get("gridsize", 30))
    return px.density_heatmap(
        frame,
        x=spec.channels.x,
        y=spec.channels.y,
        z=WEIGHT_COLUMN,
        histfunc="sum",
        nbinsx=gridsize,
        nbinsy=gridsize,
        color_continuous_scale=_SEQUENTIAL_SCALE,
        **_facet_kwargs(spec),
    )


def _distribution(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    channels = spec.channels
    kwargs: Dict[str, Any] = {
        "x": channels.x,
        "y": channels.y,
        "color": channels.color,
        "orientation": channels.orientation,
        "category_orders": _category_orders(spec),
        **_facet_kwargs(spec),
    }
    if spec.archetype is PlotArchetype.VIOLIN:
        fig = px.violin(frame, box=spec.decorations.median_line, **kwargs)
        fig.update_traces(scalemode=spec.decorations.defaults.get("scale", "width"))
        return fig
    return px.box(frame, points=spec.decorations.defaults.get("points", "outliers"), **kwargs)


def _spine(spec: PlotSpec, frame: pd.DataFrame) -> go.Figure:
    channels = spec.channels
    x = channels.x
    stack = channels.color
    orders = _category_orders(spec)
    facet = _facet_kwargs(spec)
    if stack != channels.y:
        # 세 범주형: y 레벨별 패널로 나누고 response를 쌓는다
        facet = {"facet_col": channels.y}
    group_cols = [c for c in (x, stack, facet.get("facet_row"), facet.get("facet_col")) if c]
    agg = _weighted_levels(frame, list(dict.fromkeys(group_cols)))
    panel_cols = [c for c in (x, facet.get("facet_row"), facet.get("facet_col")) if c]
    totals = agg.groupby(panel_cols, sort=False)[WEIGHT_COLUMN].transform("sum")
    agg["share"] = np.where(totals > 0, agg[WEIGHT_COLUMN] / totals, 0.0)
    fig = px.bar(agg, x=x, y="share", color=stack, category_orders=orders, **facet)
    fig.update_layout(barmode="stack", bargap=0.02)
    fig.update_yaxes(range=[0, 1], title_text=f"share of {stack}")
    return fig


def _heatmap_matrix(spec: PlotSpec, panel: Optional[str]) -> Dict[str, Any]:
    grid = spec.heatmap
    x_index = {level: idx for idx, level in enumerate(grid.x_levels)}
    y_index = {level: idx for idx, level in enumerate(grid.y_levels)}
    z = np.full((len(grid.y_levels), len(grid.x_levels)), np.nan)
    text = [["no data" for _ in grid.x_levels] for _ in grid.y_levels]

    categorical = grid.value_kind in ("ordered", "unordered")
    order = spec.level_order(grid.value_column) if grid.value_column else None
    value_levels = list(order.levels) if order is not None else []
    if categorical and not value_levels:
        value_levels = sorted({str(c.value) for c in grid.cells if c.value is not None})
    value_code = {level: idx for idx, level in enumerate(value_levels)}
    axis = spec.axis(grid.value_column) if grid.value_column else None

    for cell in grid.cells:
        if cell.panel != panel or cell.value is None:
            continue
        row, col = y_index[cell.y], x_index[cell.x]
        if categorical:
            z[row, col] = value_code.get(str(cell.value), np.nan)
        elif axis is not None and axis.transform is not AxisTransform.NONE:
            z[row, col] = float(apply_transform(np.array([float(cell.value)]), axis.transform)[0])
        else:
            z[row, col] = float(cell.value)
        text[row][col] = str(cell.value)

    trace: Dict[str, Any] = {
        "x": list(grid.x_levels),
        "y": list(grid.y_levels),
        "z": z,
        "text": text,
        "hovertemplate": "%{x}<br>%{y}<br>%{text}<extra></extra>",
        "hoverongaps": False,
        "colorscale": _SEQUENTIAL_SCALE,
    }
    if categorical and value_levels:
        trace["zmin"] = 0
        trace["zmax"] = max(1, len(value_levels) - 1)
        trace["colorbar"] = dict(
            title=str(grid.value_column),
            tickvals=list(range(len(value_levels))),
            ticktext=value_levels,
        )
    else:
        trace["colorbar"] = dict(title=str(grid.value_column or "weight"))
    return trace


def _heatmap(spec: PlotSpec) -> go.Figure:
    facet = spec.facet
    if facet is None:
        fig = go.Figure(data=go.Heatmap(**_heatmap_matrix(spec, None)))
    else:
        fig = make_subplots(
            rows=facet.rows,
            cols=facet.cols,
            subplot_titles=[f"{facet.column}={level}" for level in facet.levels],
            shared_xaxes=True,
            shared_yaxes=True,
        )
        for idx, level in enumerate(facet.levels):
            trace = go.Heatmap(showscale=idx == 0, **_heatmap_matrix(spec, level))
            fig.add_trace(trace, row=idx // facet.cols + 1, col=idx % facet.cols + 1)
    fig.update_layout(xaxis_title=str(spec.channels.x), yaxis_title=str(spec.channels.y))
    return fig


_RENDERERS = {
    PlotArchetype.DENSITY: _density,
    PlotArchetype.DOT_CHART: _dot_or_bar,
    PlotArchetype.BAR: _dot_or_bar,
    PlotArchetype.SCATTER: _scatter,
    PlotArchetype.HEXBIN: _hexbin,
    PlotArchetype.VIOLIN: _distribution,
    PlotArchetype.BOXPLOT: _distribution,
    PlotArchetype.SPINE: _spine,
}


def render_figure(
    spec: PlotSpec,
    df: pd.DataFrame,
    *,
    weights: WeightsArg = None,
) -> Dict[str, Any]:
    """PlotSpec대로 차트를 그리고 figure JSON과 코드를 반환."""
    log_event(
        "render.start",
        {
            "archetype": spec.archetype.value,
            "rows": int(len(df)),
            "facet": spec.facet.column if spec.facet else None,
        },
    )
    if spec.archetype is PlotArchetype.HEATMAP:
        fig = _heatmap(spec)
    else:
        frame = _prepare_frame(spec, df, weights)
        fig = _RENDERERS[spec.archetype](spec, frame)
        _apply_log_axes(fig, spec)

    fig.update_layout(template=_resolve_template_name(), title=spec.reason)
    # Numpy types in figure JSON can break Pydantic serialization
    fig_json = json.loads(pio.to_json(fig))
    log_event(
        "render.success",
        {"archetype": spec.archetype.value, "traces": len(fig_json.get("data", []))},
    )
    return {
        "figure_json": fig_json,
        "code": _build_code(spec),
        "render_engine": "plotly",
    }

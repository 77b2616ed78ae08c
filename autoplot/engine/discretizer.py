"""수치형 변수 구간화 + 히트맵 셀 집계.

- 구간은 폭이 아니라 가중치가 비슷하도록 나눈다 (희박한 꼬리에서 빈 구간 방지).
- 구간 경계는 해당 컬럼의 LevelOrder 역할을 한다.
- 히트맵 셀의 대표값: 수치형은 가중 중앙값, 순서형은 중앙 순위 레벨, 비순서형은 최빈값.
- 가중치 0인 셀은 "no data"로 남기고 보간하지 않는다.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pandas.api import types as pdt

from autoplot.engine.dataset import (
    Dataset,
    numeric_values,
    weighted_median,
    weighted_mode,
    weighted_quantile,
)
from autoplot.engine.errors import EmptyDataset
from autoplot.models.plot_spec import Discretization, HeatmapCell, HeatmapGrid, VariableKind


def equal_weight_edges(values: np.ndarray, weights: np.ndarray, n_bins: int) -> List[float]:
    """Strictly increasing bin edges splitting the weighted range into ~equal-weight bins."""
    vals = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    finite = np.isfinite(vals)
    vals = vals[finite]
    w = w[finite]
    if vals.size == 0:
        raise EmptyDataset("no finite values to discretize", stage="discretizer")
    lo = float(vals.min())
    hi = float(vals.max())
    if lo == hi:
        return [lo, hi]

    n_bins = max(1, int(n_bins))
    inner = [weighted_quantile(vals, w, k / n_bins) for k in range(1, n_bins)]
    edges = sorted({lo, hi, *inner})
    return [float(e) for e in edges]


def assign_bins(values: np.ndarray, edges: Sequence[float]) -> np.ndarray:
    """Bin index per value: bin 0 is [e0, e1], bin i>0 is (e_i, e_i+1]."""
    vals = np.asarray(values, dtype=float)
    if len(edges) <= 2:
        return np.zeros(vals.shape, dtype=int)
    inner = np.asarray(edges[1:-1], dtype=float)
    return np.searchsorted(inner, vals, side="left").astype(int)


def _format_edge(value: float, precision: int, is_time: bool) -> str:
    if is_time:
        return str(pd.Timestamp(int(value)))
    return f"{value:.{precision}g}"


def bin_labels(edges: Sequence[float], *, is_time: bool = False) -> List[str]:
    if len(edges) == 2 and edges[0] == edges[1]:
        return [f"[{_format_edge(edges[0], 6, is_time)}]"]
    precision = 4
    while True:
        parts = [_format_edge(e, precision, is_time) for e in edges]
        # 반올림으로 경계가 겹치면 자릿수를 늘린다
        if len(set(parts)) == len(parts) or precision >= 15:
            break
        precision += 2
    labels = []
    for idx in range(len(edges) - 1):
        left = "[" if idx == 0 else "("
        labels.append(f"{left}{parts[idx]}, {parts[idx + 1]}]")
    return labels


# 입력: dataset, column, n_bins
# 출력: (행별 구간 라벨, Discretization)
def discretize(dataset: Dataset, column: str, n_bins: int) -> Tuple[pd.Series, Discretization]:
    series = dataset.column(column)
    is_time = bool(pdt.is_datetime64_any_dtype(series))
    values = numeric_values(series)
    edges = equal_weight_edges(values, dataset.weight_array(), n_bins)
    labels = bin_labels(edges, is_time=is_time)
    codes = assign_bins(values, edges)
    codes = np.clip(codes, 0, len(labels) - 1)
    row_labels = pd.Series(np.asarray(labels, dtype=object)[codes], index=series.index, name=column)
    return row_labels, Discretization(column=column, edges=tuple(edges), labels=tuple(labels))


def _cell_value(
    values: pd.Series,
    weights: pd.Series,
    kind: Optional[VariableKind],
    rank_of: Dict[str, int],
    levels: Sequence[str],
):
    if kind is None:
        return float(weights.sum())
    if kind is VariableKind.NUMERIC:
        return weighted_median(numeric_values(values), weights.to_numpy(dtype=float))
    if kind is VariableKind.ORDERED:
        ranks = values.astype(str).map(rank_of).to_numpy(dtype=float)
        med = weighted_median(ranks, weights.to_numpy(dtype=float))
        return levels[int(round(med))]
    return str(weighted_mode(values.astype(str), weights))


def heatmap_cells(
    dataset: Dataset,
    x_labels: pd.Series,
    y_labels: pd.Series,
    x_levels: Sequence[str],
    y_levels: Sequence[str],
    *,
    color_column: Optional[str] = None,
    color_kind: Optional[VariableKind] = None,
    color_levels: Sequence[str] = (),
) -> HeatmapGrid:
    """Central tendency of the color variable per (x, y) grid cell."""
    frame = pd.DataFrame(
        {
            "x": x_labels.astype(str).to_numpy(),
            "y": y_labels.astype(str).to_numpy(),
            "w": dataset.weight_array(),
        }
    )
    if color_column is not None:
        frame["v"] = dataset.column(color_column).to_numpy()
    rank_of = {level: idx for idx, level in enumerate(color_levels)}

    grouped: Dict[Tuple[str, str], pd.DataFrame] = {
        (str(k[0]), str(k[1])): g for k, g in frame.groupby(["x", "y"], sort=False)
    }
    cells: List[HeatmapCell] = []
    for xl in x_levels:
        for yl in y_levels:
            group = grouped.get((xl, yl))
            weight = float(group["w"].sum()) if group is not None else 0.0
            if group is None or weight <= 0:
                cells.append(HeatmapCell(x=xl, y=yl, weight=0.0, value=None))
                continue
            positive = group[group["w"] > 0]
            value = _cell_value(
                positive["v"] if color_column is not None else positive["w"],
                positive["w"],
                color_kind if color_column is not None else None,
                rank_of,
                color_levels,
            )
            cells.append(HeatmapCell(x=xl, y=yl, weight=weight, value=value))

    value_kind = color_kind.value if (color_column is not None and color_kind is not None) else "weight"
    return HeatmapGrid(
        x_levels=tuple(x_levels),
        y_levels=tuple(y_levels),
        value_column=color_column,
        value_kind=value_kind,
        cells=tuple(cells),
    )

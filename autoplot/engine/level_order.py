"""Display order for categorical levels."""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from autoplot.engine.classifier import ordered_levels
from autoplot.engine.dataset import (
    Dataset,
    level_labels,
    natural_sort_key,
    numeric_values,
    weighted_median,
    weighted_mode,
)
from autoplot.models.plot_spec import LevelOrder, VariableKind
from autoplot.utils.logging import record_trace


def _group_stat(
    frame: pd.DataFrame,
    by_kind: VariableKind,
    rank_of: Dict[str, int],
) -> Dict[str, float]:
    stats: Dict[str, float] = {}
    for level, group in frame.groupby("level", sort=False):
        positive = group[group["w"] > 0]
        if positive.empty:
            stats[str(level)] = math.inf
            continue
        if by_kind is VariableKind.NUMERIC:
            stats[str(level)] = weighted_median(
                numeric_values(positive["by"]),
                positive["w"].to_numpy(dtype=float),
            )
        elif by_kind is VariableKind.ORDERED:
            ranks = positive["by"].astype(str).map(rank_of).to_numpy(dtype=float)
            stats[str(level)] = weighted_median(ranks, positive["w"].to_numpy(dtype=float))
        else:
            mode = str(weighted_mode(positive["by"].astype(str), positive["w"]))
            stats[str(level)] = float(rank_of.get(mode, len(rank_of)))
    return stats


def frequency_order(labels: pd.Series, weights: pd.Series) -> List[str]:
    frame = pd.DataFrame({"level": labels.to_numpy(), "w": weights.to_numpy(dtype=float)})
    totals = frame.groupby("level", sort=False)["w"].sum()
    return sorted(
        (str(level) for level in totals.index),
        key=lambda lv: (-float(totals[lv]), natural_sort_key(lv)),
    )


# 입력: dataset, column(범주형), by(응답 또는 다른 수치/순서 변수)
# 출력: LevelOrder (관측된 레벨의 순열)
# 순서형은 선언 순서 유지, 비순서형은 by의 중앙값/최빈값 또는 가중 빈도 내림차순
def order_levels(
    dataset: Dataset,
    column: str,
    kind: VariableKind,
    *,
    by: Optional[str] = None,
    by_kind: Optional[VariableKind] = None,
    by_levels: Sequence[str] = (),
    trace: Optional[List[Dict[str, Any]]] = None,
) -> LevelOrder:
    series = dataset.column(column)
    labels = level_labels(series)

    if kind is VariableKind.ORDERED:
        levels = [str(level) for level in ordered_levels(series, kind)]
        order = LevelOrder(column=column, levels=tuple(levels), basis="declared")
    elif by is not None and by_kind is not None and by != column:
        frame = pd.DataFrame(
            {
                "level": labels.to_numpy(),
                "by": dataset.column(by).to_numpy(),
                "w": dataset.weight_array(),
            }
        )
        rank_of = {level: idx for idx, level in enumerate(by_levels)}
        stats = _group_stat(frame, by_kind, rank_of)
        levels = sorted(stats, key=lambda lv: (stats[lv], natural_sort_key(lv)))
        basis = "response-mode" if by_kind is VariableKind.UNORDERED else "response-median"
        order = LevelOrder(column=column, levels=tuple(levels), basis=basis)
    else:
        levels = frequency_order(labels, dataset.weights)
        order = LevelOrder(column=column, levels=tuple(levels), basis="frequency")

    record_trace(
        trace,
        "level_order",
        "ordered",
        {"column": column, "basis": order.basis, "n_levels": len(order.levels)},
    )
    return order


def level_weights(labels: pd.Series, weights: pd.Series) -> Dict[str, float]:
    frame = pd.DataFrame({"level": labels.astype(str).to_numpy(), "w": weights.to_numpy(dtype=float)})
    totals = frame.groupby("level", sort=False)["w"].sum()
    return {str(k): float(v) for k, v in totals.items() if np.isfinite(v)}

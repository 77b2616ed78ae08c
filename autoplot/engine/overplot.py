"""Overplotting remedies for point-based archetypes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import Dataset, numeric_values
from autoplot.models.plot_spec import OverplotRemedy, PlotArchetype, RemedyKind
from autoplot.utils.logging import record_trace

POINT_ARCHETYPES = (PlotArchetype.SCATTER, PlotArchetype.HEXBIN)
_MIN_OPACITY = 0.2
WEIGHT_COLUMN = "__weight__"
COUNT_COLUMN = "__count__"


def collapse_duplicates(dataset: Dataset, x: str, y: str) -> pd.DataFrame:
    """One row per distinct (x, y) pair with summed weight and row count."""
    frame = pd.DataFrame(
        {
            x: dataset.column(x).to_numpy(),
            y: dataset.column(y).to_numpy(),
            WEIGHT_COLUMN: dataset.weight_array(),
        }
    )
    grouped = frame.groupby([x, y], sort=False, dropna=False)
    collapsed = grouped[WEIGHT_COLUMN].agg(["sum", "size"]).reset_index()
    return collapsed.rename(columns={"sum": WEIGHT_COLUMN, "size": COUNT_COLUMN})


def jitter_offsets(n: int, width: float, rng: np.random.Generator) -> np.ndarray:
    """Uniform offsets in [-width/2, width/2]."""
    half = abs(float(width)) / 2.0
    return rng.uniform(-half, half, size=int(n))


def _axis_range(dataset: Dataset, column: str) -> float:
    values = numeric_values(dataset.column(column))
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0
    return float(values.max() - values.min())


def _jitter_width(dataset: Dataset, column: str, options: EngineOptions) -> float:
    span = _axis_range(dataset, column)
    # 값이 하나뿐인 축은 단위 폭 기준으로 흔든다
    return options.jitter_fraction * (span if span > 0 else 1.0)


def duplicate_rate(collapsed: pd.DataFrame, n_rows: int) -> float:
    if n_rows <= 0:
        return 0.0
    return float(1.0 - len(collapsed) / n_rows)


def _opacity(max_stack_weight: float, typical_weight: float) -> float:
    if typical_weight <= 0:
        return 1.0
    ratio = max(1.0, max_stack_weight / typical_weight)
    return float(np.clip(1.0 / np.sqrt(ratio), _MIN_OPACITY, 1.0))


# 입력: dataset, x/y 컬럼, archetype, options, seed
# 출력: OverplotRemedy (scatter/hexbin 외에는 None)
def select_overplot_remedy(
    dataset: Dataset,
    x: str,
    y: str,
    archetype: PlotArchetype,
    options: EngineOptions,
    seed: Optional[int] = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> Optional[OverplotRemedy]:
    if archetype not in POINT_ARCHETYPES:
        return None

    collapsed = collapse_duplicates(dataset, x, y)
    rate = duplicate_rate(collapsed, dataset.n_rows)
    max_stack = float(collapsed[WEIGHT_COLUMN].max()) if not collapsed.empty else 0.0
    positive = dataset.weight_array()
    positive = positive[positive > 0]
    typical = float(np.median(positive)) if positive.size else 0.0

    if archetype is PlotArchetype.HEXBIN:
        remedy = OverplotRemedy(
            kind=RemedyKind.NONE,
            duplicate_rate=rate,
            max_stack_weight=max_stack,
            reason="hexbin cells already aggregate weight",
        )
    elif options.overplot_remedy == "none":
        remedy = OverplotRemedy(
            kind=RemedyKind.NONE,
            duplicate_rate=rate,
            max_stack_weight=max_stack,
            reason="disabled by option",
        )
    elif options.overplot_remedy == "jitter":
        remedy = OverplotRemedy(
            kind=RemedyKind.JITTER,
            duplicate_rate=rate,
            max_stack_weight=max_stack,
            jitter_width_x=_jitter_width(dataset, x, options),
            jitter_width_y=_jitter_width(dataset, y, options),
            seed=seed if seed is not None else options.seed,
            reason="jitter requested",
        )
    elif options.overplot_remedy == "size" or rate > options.duplicate_tolerance or dataset.is_weighted:
        if options.overplot_remedy == "size":
            reason = "size by weight requested"
        elif rate > options.duplicate_tolerance:
            reason = f"duplicate rate {rate:.3f} > {options.duplicate_tolerance}"
        else:
            reason = "non-uniform weights"
        remedy = OverplotRemedy(
            kind=RemedyKind.SIZE,
            duplicate_rate=rate,
            opacity=_opacity(max_stack, typical),
            max_stack_weight=max_stack,
            reason=reason,
        )
    else:
        remedy = OverplotRemedy(
            kind=RemedyKind.NONE,
            duplicate_rate=rate,
            max_stack_weight=max_stack,
            reason=f"duplicate rate {rate:.3f} is negligible",
        )

    record_trace(
        trace,
        "overplot",
        "selected",
        {"kind": remedy.kind.value, "duplicate_rate": rate, "reason": remedy.reason},
    )
    return remedy

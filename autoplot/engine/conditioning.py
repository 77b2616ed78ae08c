"""Conditioning resolution: color channel or facet grid."""
from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from autoplot.config.engine_config import EngineOptions
from autoplot.models.plot_spec import ARCHETYPE_CHANNELS, FacetSpec, PlotArchetype
from autoplot.utils.logging import record_trace

OTHER_LABEL = "(other)"


class ConditioningResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    color: Optional[str] = None
    facet_row: Optional[str] = None
    facet_col: Optional[str] = None
    facet: Optional[FacetSpec] = None


def _lump_levels(
    levels: Sequence[str],
    level_weights: Mapping[str, float],
    capacity: int,
) -> tuple[List[str], Optional[str]]:
    if len(levels) <= capacity:
        return list(levels), None
    if capacity <= 1:
        # 패널이 하나뿐이면 모든 레벨을 한 패널로 묶는다
        return [OTHER_LABEL], OTHER_LABEL
    # 격자에 다 안 들어가면 가중치 큰 레벨만 남기고 나머지는 (other) 패널로 묶는다
    keep_n = capacity - 1
    heaviest = sorted(levels, key=lambda lv: (-float(level_weights.get(lv, 0.0)), levels.index(lv)))[:keep_n]
    kept = [lv for lv in levels if lv in set(heaviest)]
    return kept + [OTHER_LABEL], OTHER_LABEL


def facet_grid(n_panels: int, prefer: str, options: EngineOptions) -> tuple[int, int]:
    if prefer == "row":
        rows = max(1, min(n_panels, options.max_facet_rows))
        cols = max(1, math.ceil(n_panels / rows))
        # 렌더러는 cols 기준으로 줄바꿈하므로 행 수를 다시 맞춘다
        rows = max(1, math.ceil(n_panels / cols))
    else:
        cols = max(1, min(n_panels, options.max_facet_cols))
        rows = max(1, math.ceil(n_panels / cols))
    return rows, cols


# 입력: archetype, 조건 변수 컬럼/레벨 순서/레벨별 가중치
# 출력: ConditioningResolution (color 또는 facet)
def resolve_conditioning(
    archetype: PlotArchetype,
    column: str,
    levels: Sequence[str],
    level_weights: Mapping[str, float],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> ConditioningResolution:
    rules = ARCHETYPE_CHANNELS[archetype]
    n_levels = len(levels)
    if rules["free_color"] and n_levels <= options.max_colors:
        record_trace(
            trace,
            "conditioning",
            "color",
            {"column": column, "n_levels": n_levels, "max_colors": options.max_colors},
        )
        return ConditioningResolution(color=column)

    capacity = options.max_facet_rows * options.max_facet_cols
    panels, other_label = _lump_levels(list(levels), level_weights, capacity)
    prefer = rules["facet"]
    rows, cols = facet_grid(len(panels), prefer, options)
    facet = FacetSpec(
        column=column,
        rows=rows,
        cols=cols,
        levels=tuple(panels),
        other_label=other_label,
    )
    record_trace(
        trace,
        "conditioning",
        "facet",
        {
            "column": column,
            "n_levels": n_levels,
            "rows": rows,
            "cols": cols,
            "lumped": other_label is not None,
            "reason": "color channel taken" if not rules["free_color"] else "too many levels for color",
        },
    )
    if cols == 1:
        return ConditioningResolution(facet_row=column, facet=facet)
    return ConditioningResolution(facet_col=column, facet=facet)

"""Axis transform selection by inter-quartile occupancy."""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import numpy as np

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import weighted_quantile
from autoplot.engine.errors import DegenerateDistribution
from autoplot.models.plot_spec import AxisTransform
from autoplot.utils.logging import log_event, record_trace


def log_modulus(values: np.ndarray) -> np.ndarray:
    vals = np.asarray(values, dtype=float)
    return np.sign(vals) * np.log1p(np.abs(vals))


_TRANSFORMS: Dict[AxisTransform, Callable[[np.ndarray], np.ndarray]] = {
    AxisTransform.NONE: lambda v: np.asarray(v, dtype=float),
    AxisTransform.LOG: lambda v: np.log10(np.asarray(v, dtype=float)),
    AxisTransform.LOG_MODULUS: log_modulus,
}


def _summary(values: np.ndarray, weights: np.ndarray) -> np.ndarray:
    vals = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    mask = np.isfinite(vals) & (w > 0)
    vals = vals[mask]
    w = w[mask]
    if vals.size == 0:
        raise DegenerateDistribution("no positive-weight values", stage="axis_transform")
    lo = float(vals.min())
    hi = float(vals.max())
    if lo == hi:
        raise DegenerateDistribution(
            f"single observed value {lo}",
            stage="axis_transform",
        )
    q1 = weighted_quantile(vals, w, 0.25)
    q3 = weighted_quantile(vals, w, 0.75)
    if q1 == q3:
        raise DegenerateDistribution(
            "inter-quartile span is zero",
            stage="axis_transform",
        )
    return np.array([lo, q1, q3, hi], dtype=float)


def occupancy(points: np.ndarray, transform: AxisTransform) -> float:
    """Share of the display range taken by the inter-quartile region."""
    lo, q1, q3, hi = _TRANSFORMS[transform](points)
    span = hi - lo
    if span <= 0:
        return 0.0
    return float((q3 - q1) / span)


# 입력: 수치형 값, 가중치
# 출력: AxisTransform (none | log | log-modulus)
# 0 이하 값이 하나라도 있으면 log는 후보에서 제외
def select_axis_transform(
    values: np.ndarray,
    weights: np.ndarray,
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]] = None,
    column: Optional[str] = None,
) -> AxisTransform:
    try:
        points = _summary(values, weights)
    except DegenerateDistribution as exc:
        if column is not None:
            exc.columns = [column]
        log_event("engine.transform.skipped", exc.to_dict(), level="debug")
        record_trace(trace, "axis_transform", "skipped", exc.to_dict())
        return AxisTransform.NONE

    baseline = occupancy(points, AxisTransform.NONE)
    scores: Dict[str, float] = {AxisTransform.NONE.value: baseline}
    candidates = [AxisTransform.LOG_MODULUS]
    if points[0] > 0:
        candidates.insert(0, AxisTransform.LOG)

    chosen = AxisTransform.NONE
    for candidate in candidates:
        ratio = occupancy(points, candidate) / baseline
        scores[candidate.value] = ratio
        if ratio > options.transform_threshold and chosen is AxisTransform.NONE:
            chosen = candidate

    record_trace(
        trace,
        "axis_transform",
        "selected",
        {
            "column": column,
            "transform": chosen.value,
            "identity_occupancy": baseline,
            "ratios": scores,
            "threshold": options.transform_threshold,
        },
    )
    return chosen


def apply_transform(values: np.ndarray, transform: AxisTransform) -> np.ndarray:
    return _TRANSFORMS[transform](values)

"""Informativeness estimation via weighted conditional entropy."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import entropy

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import Dataset, level_labels
from autoplot.engine.discretizer import discretize
from autoplot.models.plot_spec import VariableInfo, VariableKind
from autoplot.utils.logging import record_trace


def _as_levels(dataset: Dataset, column: str, kind: VariableKind, options: EngineOptions) -> pd.Series:
    # 수치형은 엔트로피 계산에만 구간 라벨로 대체 (원래 값은 그대로 플롯에 사용)
    if kind is VariableKind.NUMERIC:
        labels, _ = discretize(dataset, column, options.n_bins)
        return labels
    return level_labels(dataset.column(column))


def _entropy_bits(weights: np.ndarray) -> float:
    if float(weights.sum()) <= 0:
        return 0.0
    # entropy()가 가중치 합으로 정규화한다
    return float(entropy(weights, base=2))


def weighted_entropy(labels: pd.Series, weights: pd.Series) -> float:
    frame = pd.DataFrame({"b": labels.to_numpy(), "w": weights.to_numpy(dtype=float)})
    return _entropy_bits(frame.groupby("b", sort=False)["w"].sum().to_numpy())


# 입력: dataset, target, given
# 출력: H(target | given) (bits)
# 값이 작을수록 given이 target의 변동을 더 잘 설명한다
def conditional_entropy(
    dataset: Dataset,
    target: str,
    given: str,
    kinds: Mapping[str, VariableInfo],
    options: EngineOptions,
) -> float:
    b = _as_levels(dataset, target, kinds[target].kind, options)
    a = _as_levels(dataset, given, kinds[given].kind, options)
    frame = pd.DataFrame(
        {
            "a": a.to_numpy(),
            "b": b.to_numpy(),
            "w": dataset.weight_array(),
        }
    )
    total = float(frame["w"].sum())
    if total <= 0:
        return 0.0
    score = 0.0
    for _, group in frame.groupby("a", sort=False):
        weight_a = float(group["w"].sum())
        if weight_a <= 0:
            continue
        joint = group.groupby("b", sort=False)["w"].sum().to_numpy()
        score += (weight_a / total) * _entropy_bits(joint)
    return float(score)


def rank_explanatory(
    dataset: Dataset,
    response: Optional[str],
    candidates: Sequence[str],
    kinds: Mapping[str, VariableInfo],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> List[Tuple[str, Optional[float]]]:
    """Order candidates by ascending H(response | candidate); ties keep input order."""
    if not response or len(candidates) < 2:
        return [(c, None) for c in candidates]
    scored = [
        (idx, column, conditional_entropy(dataset, response, column, kinds, options))
        for idx, column in enumerate(candidates)
    ]
    # 부동소수 오차로 동점 순서가 뒤집히지 않도록 반올림 후 정렬
    scored.sort(key=lambda item: (round(item[2], 12), item[0]))
    ranked = [(column, score) for _, column, score in scored]
    if trace is not None:
        baseline = weighted_entropy(_as_levels(dataset, response, kinds[response].kind, options), dataset.weights)
        record_trace(
            trace,
            "informativeness",
            "ranked",
            {
                "response": response,
                "baseline_bits": baseline,
                "scores": {column: score for column, score in ranked},
            },
        )
    return ranked

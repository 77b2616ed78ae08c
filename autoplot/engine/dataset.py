"""Weighted dataset view and the weighted statistics the engine relies on."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from pandas.api import types as pdt

from autoplot.engine.errors import EmptyDataset, InvalidFormula, InvalidWeights

WeightsArg = Union[str, Sequence[float], np.ndarray, pd.Series, None]


@dataclass(frozen=True)
class Dataset:
    """Rows x named columns plus one non-negative weight per row."""

    frame: pd.DataFrame
    weights: pd.Series

    @classmethod
    def from_frame(
        cls,
        data: Union[pd.DataFrame, List[Dict[str, Any]]],
        weights: WeightsArg = None,
    ) -> "Dataset":
        frame = data if isinstance(data, pd.DataFrame) else pd.DataFrame(data)
        # 포뮬러는 컬럼을 문자열 이름으로만 참조한다
        names = [str(c) for c in frame.columns]
        if len(set(names)) != len(names):
            clashes = sorted({n for n in names if names.count(n) > 1})
            raise InvalidFormula(
                "column names collide once converted to text",
                stage="dataset",
                columns=clashes,
            )
        if any(not isinstance(c, str) for c in frame.columns):
            frame = frame.rename(columns=str)
        if isinstance(weights, str):
            if weights not in frame.columns:
                raise InvalidFormula(
                    f"weight column '{weights}' does not exist",
                    stage="dataset",
                    columns=[weights],
                )
            raw = frame[weights]
            # 가중치 컬럼은 와일드카드 대상에서 빠지도록 제거
            frame = frame.drop(columns=[weights])
        elif weights is None:
            raw = pd.Series(np.ones(len(frame)), index=frame.index)
        else:
            values = np.asarray(weights, dtype=float)
            if values.shape != (len(frame),):
                raise InvalidWeights(
                    f"weight vector length {values.size} does not match row count {len(frame)}",
                    stage="dataset",
                )
            raw = pd.Series(values, index=frame.index)

        numeric = pd.to_numeric(raw, errors="coerce").astype(float)
        if numeric.isna().any() or not np.isfinite(numeric.to_numpy()).all():
            raise InvalidWeights("weights must be finite numbers", stage="dataset")
        if (numeric < 0).any():
            raise InvalidWeights("weights must be non-negative", stage="dataset")
        dataset = cls(frame=frame, weights=numeric)
        dataset.ensure_not_empty("dataset")
        return dataset

    @property
    def columns(self) -> List[str]:
        return [str(c) for c in self.frame.columns]

    @property
    def n_rows(self) -> int:
        return int(len(self.frame))

    @property
    def total_weight(self) -> float:
        return float(self.weights.sum())

    @property
    def is_weighted(self) -> bool:
        if self.weights.empty:
            return False
        values = self.weights.to_numpy()
        return bool(not np.allclose(values, values[0]))

    def column(self, name: str) -> pd.Series:
        return self.frame[name]

    def weight_array(self) -> np.ndarray:
        return self.weights.to_numpy(dtype=float)

    def take(self, positions: Sequence[int]) -> "Dataset":
        pos = np.asarray(positions, dtype=int)
        return Dataset(frame=self.frame.iloc[pos], weights=self.weights.iloc[pos])

    def complete_cases(self, columns: Sequence[str]) -> "Dataset":
        if not columns:
            return self
        mask = self.frame[list(columns)].notna().all(axis=1)
        if bool(mask.all()):
            return self
        return Dataset(frame=self.frame.loc[mask], weights=self.weights.loc[mask])

    def ensure_not_empty(self, stage: str, columns: Optional[Sequence[str]] = None) -> None:
        if self.n_rows == 0 or self.total_weight <= 0:
            raise EmptyDataset(
                "no rows with positive weight remain",
                stage=stage,
                columns=columns,
            )


def numeric_values(series: pd.Series) -> np.ndarray:
    """Return a float view of a numeric or datetime column."""
    if pdt.is_datetime64_any_dtype(series) or pdt.is_timedelta64_dtype(series):
        return series.astype("int64").to_numpy(dtype=float)
    return pd.to_numeric(series, errors="coerce").to_numpy(dtype=float)


def level_labels(series: pd.Series) -> pd.Series:
    """String labels used for categorical levels everywhere in a PlotSpec."""
    return series.astype(str)


def natural_sort_key(value: Any) -> tuple:
    # 숫자는 값 기준, 나머지는 문자열 기준 (숫자가 먼저)
    if isinstance(value, (bool, np.bool_)):
        return (1, str(value))
    if isinstance(value, (int, float, np.integer, np.floating)):
        return (0, float(value), "")
    text = str(value)
    try:
        return (0, float(text), text)
    except ValueError:
        return (1, text)


def weighted_quantile(values: np.ndarray, weights: np.ndarray, q: float) -> float:
    """Inverse-CDF weighted quantile; always returns an observed value."""
    vals = np.asarray(values, dtype=float)
    w = np.asarray(weights, dtype=float)
    mask = (w > 0) & np.isfinite(vals)
    vals = vals[mask]
    w = w[mask]
    if vals.size == 0:
        raise EmptyDataset("no positive-weight values for quantile", stage="statistics")
    return float(np.quantile(vals, float(q), weights=w, method="inverted_cdf"))


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    return weighted_quantile(values, weights, 0.5)


def weighted_counts(labels: pd.Series, weights: pd.Series) -> pd.Series:
    """Total weight per label, indexed by label."""
    frame = pd.DataFrame({"label": labels.to_numpy(), "w": weights.to_numpy(dtype=float)})
    return frame.groupby("label", sort=False)["w"].sum()


def weighted_mode(labels: pd.Series, weights: pd.Series) -> Any:
    """Heaviest label; ties resolved by natural order."""
    totals = weighted_counts(labels, weights)
    if totals.empty:
        raise EmptyDataset("no values for mode", stage="statistics")
    best = float(totals.max())
    tied = [label for label, w in totals.items() if np.isclose(float(w), best)]
    return sorted(tied, key=natural_sort_key)[0]

"""Variable classification: numeric / ordered / unordered per referenced column."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from pandas.api import types as pdt

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import Dataset, natural_sort_key
from autoplot.models.plot_spec import VariableInfo, VariableKind
from autoplot.utils.logging import record_trace


def _looks_numeric(series: pd.Series) -> bool:
    values = series.dropna()
    if values.empty:
        return False
    coerced = pd.to_numeric(values, errors="coerce")
    return bool(coerced.notna().all())


def _declared_kind(series: pd.Series) -> Optional[VariableKind]:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return VariableKind.ORDERED if series.dtype.ordered else VariableKind.UNORDERED
    if pdt.is_bool_dtype(series):
        return VariableKind.UNORDERED
    if pdt.is_numeric_dtype(series) or pdt.is_datetime64_any_dtype(series) or pdt.is_timedelta64_dtype(series):
        return None
    if (pdt.is_object_dtype(series) or pdt.is_string_dtype(series)) and not _looks_numeric(series):
        return VariableKind.UNORDERED
    return None


# 입력: series, options
# 출력: VariableInfo
# 선언 타입 우선, 수치형은 저카디널리티일 때만 범주형(순서형)으로 재분류
def classify_column(name: str, series: pd.Series, options: EngineOptions) -> VariableInfo:
    n_levels = int(series.nunique(dropna=True))
    declared = _declared_kind(series)
    if declared is not None:
        return VariableInfo(name=name, kind=declared, n_levels=n_levels)

    is_time = pdt.is_datetime64_any_dtype(series) or pdt.is_timedelta64_dtype(series)
    if (
        options.discrete_as_categorical
        and not is_time
        and n_levels < options.discrete_threshold
    ):
        return VariableInfo(
            name=name,
            kind=VariableKind.ORDERED,
            n_levels=n_levels,
            reclassified=True,
        )
    return VariableInfo(name=name, kind=VariableKind.NUMERIC, n_levels=n_levels)


def classify_variables(
    dataset: Dataset,
    columns: Sequence[str],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, VariableInfo]:
    """Classify each referenced column exactly once, preserving input order."""
    result: Dict[str, VariableInfo] = {}
    for name in columns:
        if name in result:
            continue
        info = classify_column(name, dataset.column(name), options)
        result[name] = info
        record_trace(
            trace,
            "classifier",
            "classified",
            {
                "column": name,
                "kind": info.kind.value,
                "n_levels": info.n_levels,
                "reclassified": info.reclassified,
            },
        )
    return result


def ordered_levels(series: pd.Series, kind: VariableKind) -> List[Any]:
    """Natural level order of an ordered column, restricted to observed values."""
    observed = set(series.dropna().unique().tolist())
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [level for level in series.dtype.categories.tolist() if level in observed]
    if kind is VariableKind.ORDERED:
        return sorted(observed, key=natural_sort_key)
    return list(observed)

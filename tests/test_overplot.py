from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import Dataset
from autoplot.engine.overplot import (
    COUNT_COLUMN,
    WEIGHT_COLUMN,
    collapse_duplicates,
    jitter_offsets,
    select_overplot_remedy,
)
from autoplot.models.plot_spec import PlotArchetype, RemedyKind


def _stacked_dataset() -> Dataset:
    # 100행 중 (1, 1) 좌표가 50번 겹친다
    x = np.concatenate([np.ones(50), np.arange(50, dtype=float) + 2.0])
    y = np.concatenate([np.ones(50), np.arange(50, dtype=float) * 3.0])
    return Dataset.from_frame(pd.DataFrame({"x": x, "y": y}))


def test_duplicates_trigger_size_remedy() -> None:
    remedy = select_overplot_remedy(_stacked_dataset(), "x", "y", PlotArchetype.SCATTER, EngineOptions())

    assert remedy.kind is RemedyKind.SIZE
    assert remedy.duplicate_rate == pytest.approx(0.49)
    assert remedy.max_stack_weight == pytest.approx(50.0)
    assert remedy.opacity < 1.0


def test_distinct_points_need_no_remedy() -> None:
    dataset = Dataset.from_frame(pd.DataFrame({"x": np.arange(100.0), "y": np.arange(100.0) ** 2}))

    remedy = select_overplot_remedy(dataset, "x", "y", PlotArchetype.SCATTER, EngineOptions())

    assert remedy.kind is RemedyKind.NONE
    assert remedy.duplicate_rate == 0.0


def test_jitter_is_opt_in_and_seeded() -> None:
    options = EngineOptions(overplot_remedy="jitter", seed=42)

    remedy = select_overplot_remedy(_stacked_dataset(), "x", "y", PlotArchetype.SCATTER, options)

    assert remedy.kind is RemedyKind.JITTER
    assert remedy.seed == 42
    assert remedy.jitter_width_x == pytest.approx(0.02 * 50.0)
    assert remedy.jitter_width_y == pytest.approx(0.02 * 147.0)


def test_none_option_and_non_point_archetypes() -> None:
    dataset = _stacked_dataset()

    disabled = select_overplot_remedy(dataset, "x", "y", PlotArchetype.SCATTER, EngineOptions(overplot_remedy="none"))
    hexbin = select_overplot_remedy(dataset, "x", "y", PlotArchetype.HEXBIN, EngineOptions())

    assert disabled.kind is RemedyKind.NONE
    assert hexbin.kind is RemedyKind.NONE
    assert select_overplot_remedy(dataset, "x", "y", PlotArchetype.VIOLIN, EngineOptions()) is None


def test_jitter_offsets_are_bounded_and_reproducible() -> None:
    first = jitter_offsets(1000, 0.5, np.random.default_rng(9))
    second = jitter_offsets(1000, 0.5, np.random.default_rng(9))

    assert np.array_equal(first, second)
    assert np.all(np.abs(first) <= 0.25)


def test_collapse_duplicates_sums_weights() -> None:
    dataset = Dataset.from_frame(
        pd.DataFrame({"x": [1, 1, 2], "y": [5, 5, 6]}),
        [2.0, 3.0, 1.0],
    )

    collapsed = collapse_duplicates(dataset, "x", "y")

    row = collapsed[(collapsed["x"] == 1) & (collapsed["y"] == 5)].iloc[0]
    assert row[WEIGHT_COLUMN] == pytest.approx(5.0)
    assert row[COUNT_COLUMN] == 2
    assert len(collapsed) == 2

from __future__ import annotations

import numpy as np

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.axis_transform import log_modulus, occupancy, select_axis_transform
from autoplot.models.plot_spec import AxisTransform


def _ones(values: np.ndarray) -> np.ndarray:
    return np.ones(len(values))


def test_right_skewed_positive_values_get_log() -> None:
    values = 10 ** np.linspace(0, 4, 101)

    assert select_axis_transform(values, _ones(values), EngineOptions()) is AxisTransform.LOG


def test_symmetric_values_get_no_transform() -> None:
    values = np.linspace(10, 20, 101)

    assert select_axis_transform(values, _ones(values), EngineOptions()) is AxisTransform.NONE


def test_skewed_values_with_negatives_get_log_modulus() -> None:
    tail = 10 ** np.linspace(0, 4, 50)
    values = np.concatenate([-tail, [0.0], tail])
    trace: list = []

    chosen = select_axis_transform(values, _ones(values), EngineOptions(), trace, "profit")

    assert chosen is AxisTransform.LOG_MODULUS
    assert AxisTransform.LOG.value not in trace[-1]["ratios"]


def test_log_is_never_chosen_with_non_positive_values() -> None:
    rng = np.random.default_rng(3)
    for _ in range(20):
        values = np.concatenate([[0.0], rng.lognormal(mean=0.0, sigma=3.0, size=200)])
        chosen = select_axis_transform(values, _ones(values), EngineOptions(transform_threshold=1.01))
        assert chosen is not AxisTransform.LOG


def test_degenerate_distribution_skips_transform() -> None:
    trace: list = []
    values = np.array([5.0, 5.0, 5.0])

    chosen = select_axis_transform(values, _ones(values), EngineOptions(), trace, "constant")

    assert chosen is AxisTransform.NONE
    assert trace[-1]["event"] == "skipped"
    assert trace[-1]["code"] == "DEGENERATE_DISTRIBUTION"
    assert trace[-1]["columns"] == ["constant"]


def test_zero_quartile_span_is_degenerate() -> None:
    values = np.array([1.0] * 10 + [1000.0])

    assert select_axis_transform(values, _ones(values), EngineOptions()) is AxisTransform.NONE


def test_threshold_is_configurable() -> None:
    values = 10 ** np.linspace(0, 4, 101)

    assert select_axis_transform(values, _ones(values), EngineOptions(transform_threshold=1000.0)) is AxisTransform.NONE


def test_log_modulus_is_odd_and_finite() -> None:
    values = np.array([-100.0, -1.0, 0.0, 1.0, 100.0])
    result = log_modulus(values)

    assert np.allclose(result, -result[::-1])
    assert result[2] == 0.0
    assert occupancy(np.array([0.0, 1.0, 2.0, 4.0]), AxisTransform.NONE) == 0.25

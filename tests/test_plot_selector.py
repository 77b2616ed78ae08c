from __future__ import annotations

import pytest

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.errors import UnsupportedVariableCombination
from autoplot.engine.plot_selector import SelectionInput, select_archetype
from autoplot.models.plot_spec import PlotArchetype, VariableKind

N = VariableKind.NUMERIC
O = VariableKind.ORDERED
U = VariableKind.UNORDERED


def _select(kinds, levels, n_rows=100, has_response=True, **extra):
    selection = SelectionInput(
        kinds=tuple(kinds),
        n_levels=tuple(levels),
        n_rows=n_rows,
        has_response=has_response,
        **extra,
    )
    return select_archetype(selection, EngineOptions())


def test_single_variable_rows() -> None:
    assert _select([N], [80]).archetype is PlotArchetype.DENSITY
    assert _select([U], [6]).archetype is PlotArchetype.DOT_CHART

    few = _select([U], [3])
    assert few.archetype is PlotArchetype.BAR
    assert few.primary is PlotArchetype.DOT_CHART
    assert few.fallback_used is True


def test_numeric_pair_scatter_and_hexbin() -> None:
    assert _select([N, N], [90, 90], n_rows=500).archetype is PlotArchetype.SCATTER
    assert _select([N, N], [90, 90], n_rows=10_000).archetype is PlotArchetype.SCATTER

    large = _select([N, N], [9000, 9000], n_rows=10_001)
    assert large.archetype is PlotArchetype.HEXBIN
    assert large.primary is PlotArchetype.SCATTER


def test_categorical_pair_spine_and_heatmap() -> None:
    assert _select([U, O], [4, 3]).archetype is PlotArchetype.SPINE
    assert _select([U, U], [10, 15]).archetype is PlotArchetype.HEATMAP
    assert _select([U, U], [8, 8]).archetype is PlotArchetype.SPINE


def test_mixed_pair_fallbacks() -> None:
    violin = _select([N, U], [200, 4], max_per_level=50, min_per_level=20)
    assert violin.archetype is PlotArchetype.VIOLIN
    assert violin.orientation == "v"

    single_obs = _select([N, U], [12, 12], max_per_level=1, min_per_level=1)
    assert single_obs.archetype is PlotArchetype.BAR
    assert single_obs.primary is PlotArchetype.VIOLIN

    wide = _select([N, U], [400, 13], max_per_level=50, min_per_level=20)
    assert wide.archetype is PlotArchetype.BOXPLOT

    thin_level = _select([N, U], [100, 5], max_per_level=40, min_per_level=1)
    assert thin_level.archetype is PlotArchetype.BOXPLOT


def test_categorical_response_with_numeric_explanatory_is_horizontal() -> None:
    choice = _select([U, N], [4, 200], max_per_level=50, min_per_level=20)

    assert choice.archetype is PlotArchetype.VIOLIN
    assert choice.orientation == "h"


def test_three_variable_rows() -> None:
    assert _select([U, U, O], [3, 4, 3]).archetype is PlotArchetype.SPINE
    assert _select([U, U, U], [3, 9, 3]).archetype is PlotArchetype.HEATMAP

    numeric_response = _select([N, U, U], [50, 3, 3])
    assert numeric_response.archetype is PlotArchetype.HEATMAP
    assert numeric_response.fallback_used is True

    assert _select([U, N, U], [3, 50, 4]).archetype is PlotArchetype.HEATMAP
    assert _select([N, N, N], [50, 50, 50]).fallback_used is False


def test_unsupported_combinations() -> None:
    with pytest.raises(UnsupportedVariableCombination):
        _select([], [])
    with pytest.raises(UnsupportedVariableCombination):
        _select([N, N, N], [5, 5, 5], has_response=False)
    with pytest.raises(UnsupportedVariableCombination):
        _select([N, N], [5])


def test_selection_is_deterministic() -> None:
    inputs = ([N, U], [40, 6])
    results = {_select(*inputs, max_per_level=9, min_per_level=3) for _ in range(5)}

    assert len(results) == 1

from __future__ import annotations

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.conditioning import OTHER_LABEL, facet_grid, resolve_conditioning
from autoplot.models.plot_spec import PlotArchetype


def test_free_color_channel_takes_conditioning() -> None:
    levels = ["a", "b", "c"]
    result = resolve_conditioning(PlotArchetype.SCATTER, "g", levels, {lv: 1.0 for lv in levels}, EngineOptions())

    assert result.color == "g"
    assert result.facet is None


def test_taken_color_channel_forces_facets() -> None:
    levels = ["a", "b", "c"]
    trace: list = []
    result = resolve_conditioning(
        PlotArchetype.HEATMAP,
        "g",
        levels,
        {lv: 1.0 for lv in levels},
        EngineOptions(),
        trace,
    )

    assert result.color is None
    assert result.facet_col == "g"
    assert (result.facet.rows, result.facet.cols) == (1, 3)
    assert trace[-1]["event"] == "facet"


def test_density_facets_stack_as_rows() -> None:
    levels = ["a", "b", "c"]
    result = resolve_conditioning(
        PlotArchetype.DENSITY,
        "g",
        levels,
        {lv: 1.0 for lv in levels},
        EngineOptions(max_colors=2),
    )

    assert result.facet_row == "g"
    assert (result.facet.rows, result.facet.cols) == (3, 1)


def test_too_many_levels_are_lumped_into_other_panel() -> None:
    levels = [f"L{i}" for i in range(20)]
    weights = {lv: float(i) for i, lv in enumerate(levels)}
    result = resolve_conditioning(PlotArchetype.SPINE, "g", levels, weights, EngineOptions())

    facet = result.facet
    assert facet.other_label == OTHER_LABEL
    assert len(facet.levels) == 16
    assert facet.levels[-1] == OTHER_LABEL
    assert "L19" in facet.levels and "L0" not in facet.levels
    assert facet.rows <= 4 and facet.cols <= 4


def test_facet_grid_respects_maxima() -> None:
    options = EngineOptions(max_facet_rows=2, max_facet_cols=3)

    assert facet_grid(5, "row", options) == (2, 3)
    assert facet_grid(5, "col", options) == (2, 3)
    assert facet_grid(1, "col", options) == (1, 1)

    for max_rows, max_cols in [(1, 1), (1, 4), (4, 1), (2, 3), (4, 4)]:
        limits = EngineOptions(max_facet_rows=max_rows, max_facet_cols=max_cols)
        for n_panels in range(1, max_rows * max_cols + 1):
            for prefer in ("row", "col"):
                rows, cols = facet_grid(n_panels, prefer, limits)
                assert rows <= max_rows and cols <= max_cols
                assert rows * cols >= n_panels


def test_row_layout_has_no_empty_rows() -> None:
    # 6개 패널: 4x2가 아니라 렌더러의 줄바꿈과 같은 3x2
    assert facet_grid(6, "row", EngineOptions()) == (3, 2)


def test_single_panel_grid_lumps_every_level() -> None:
    levels = ["p", "q", "r"]
    options = EngineOptions(max_facet_rows=1, max_facet_cols=1)

    result = resolve_conditioning(PlotArchetype.SPINE, "z", levels, {"p": 5.0, "q": 1.0, "r": 1.0}, options)

    assert result.facet.levels == (OTHER_LABEL,)
    assert (result.facet.rows, result.facet.cols) == (1, 1)
    assert result.facet_row == "z"

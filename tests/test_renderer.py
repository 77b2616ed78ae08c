from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.emitter import build_plot_spec
from autoplot.models.plot_spec import PlotArchetype
from autoplot.render.plotly_renderer import render_figure


def _frame() -> pd.DataFrame:
    rng = np.random.default_rng(2)
    n_rows = 120
    x = rng.normal(size=n_rows)
    return pd.DataFrame(
        {
            "x": x,
            "y": x * 3.0 + rng.normal(size=n_rows),
            "g": rng.choice(["a", "b", "c"], size=n_rows),
            "h": rng.choice(["k", "l"], size=n_rows),
            "w": rng.uniform(0.5, 2.0, size=n_rows),
        }
    )


@pytest.mark.parametrize(
    "formula,archetype",
    [
        ("~ x", PlotArchetype.DENSITY),
        ("~ g", PlotArchetype.BAR),
        ("y ~ x", PlotArchetype.SCATTER),
        ("y ~ g", PlotArchetype.VIOLIN),
        ("g ~ h", PlotArchetype.SPINE),
        ("y ~ g + h", PlotArchetype.HEATMAP),
    ],
)
def test_render_figure_for_each_archetype(formula: str, archetype: PlotArchetype) -> None:
    df = _frame()
    spec = build_plot_spec(df, formula, options=EngineOptions())

    out = render_figure(spec, df)

    assert spec.archetype is archetype
    assert out["render_engine"] == "plotly"
    assert out["figure_json"] is not None
    assert out["figure_json"]["data"]
    assert archetype.value in out["code"]


def test_weighted_scatter_sizes_points() -> None:
    df = _frame()
    spec = build_plot_spec(df, "y ~ x", weights="w", options=EngineOptions())

    out = render_figure(spec, df, weights="w")

    marker = out["figure_json"]["data"][0]["marker"]
    assert "size" in marker


def test_empty_heatmap_cells_show_no_data() -> None:
    df = pd.DataFrame(
        {
            "a": ["u", "u", "v", "v"] * 5,
            "b": ["s", "t", "t", "s"] * 5,
            "v": np.arange(20, dtype=float),
        }
    )
    # (u, t) 와 (v, s) 조합은 데이터가 없다
    df = df[~(((df["a"] == "u") & (df["b"] == "t")) | ((df["a"] == "v") & (df["b"] == "s")))]
    spec = build_plot_spec(df, "v ~ a + b", options=EngineOptions())

    out = render_figure(spec, df)

    trace = out["figure_json"]["data"][0]
    assert trace["type"] == "heatmap"
    flat_text = [cell for row in trace["text"] for cell in row]
    assert flat_text.count("no data") == 2
    assert any(value is None for row in trace["z"] for value in row)


def test_faceted_render_uses_level_order() -> None:
    df = _frame()
    df["z"] = np.arange(len(df), dtype=float)
    spec = build_plot_spec(df, "~ g + h | z", options=EngineOptions())

    out = render_figure(spec, df)

    assert spec.facet is not None
    annotations = [a["text"] for a in out["figure_json"]["layout"].get("annotations", [])]
    assert any(text.startswith("z=") for text in annotations)

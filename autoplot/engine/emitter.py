"""PlotSpec emitter.

- 모든 결정 단계를 순서대로 실행해 불변 PlotSpec 하나를 만든다.
- 순서: 옵션 -> 데이터셋 -> 포뮬러 정규화 -> 표본 추출 -> 결측 제거 -> 변수 분류
  -> 설명변수 정렬 -> 아키타입 선택 -> 구간화/레벨 순서 -> 축 변환 -> 조건 변수
  -> overplot -> 장식.
- 호출 간 공유 상태 없음 (기본 옵션만 읽기 전용).
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api import types as pdt

from autoplot.config.engine_config import EngineOptions, resolve_options
from autoplot.engine.axis_transform import select_axis_transform
from autoplot.engine.classifier import classify_variables
from autoplot.engine.conditioning import ConditioningResolution, resolve_conditioning
from autoplot.engine.dataset import Dataset, WeightsArg, level_labels, numeric_values
from autoplot.engine.discretizer import discretize, heatmap_cells
from autoplot.engine.errors import InvalidFormula, InvalidWeights
from autoplot.engine.formula import FormulaInput, expand_wildcard, formula_to_text, normalize_formula
from autoplot.engine.informativeness import conditional_entropy, rank_explanatory
from autoplot.engine.level_order import level_weights, order_levels
from autoplot.engine.overplot import select_overplot_remedy
from autoplot.engine.plot_selector import ArchetypeChoice, SelectionInput, select_archetype
from autoplot.engine.sampler import sample_dataset
from autoplot.models.plot_spec import (
    WEIGHT_CHANNEL,
    AxisSpec,
    AxisTransform,
    ChannelBindings,
    Decorations,
    FacetSpec,
    Formula,
    HeatmapGrid,
    LevelOrder,
    PlotArchetype,
    PlotSpec,
    RemedyKind,
    VariableInfo,
    VariableKind,
)
from autoplot.utils.logging import log_event, new_request_id, record_trace

DataInput = Union[Dataset, pd.DataFrame, List[Dict[str, Any]]]
OptionsInput = Union[EngineOptions, Mapping[str, Any], None]

_HEXBIN_GRIDSIZE = 30


@dataclass
class _Layout:
    channels: Dict[str, Any] = field(default_factory=dict)
    axes: List[AxisSpec] = field(default_factory=list)
    orders: Dict[str, LevelOrder] = field(default_factory=dict)
    # 히트맵 격자 축의 행별 라벨 (구간화된 수치형 포함)
    grid_labels: Dict[str, pd.Series] = field(default_factory=dict)
    color_column: Optional[str] = None


def _load_dataset(data: DataInput, weights: WeightsArg) -> Dataset:
    if isinstance(data, Dataset):
        if weights is not None:
            raise InvalidWeights(
                "weights are already part of the Dataset; pass a DataFrame to apply new weights",
                stage="dataset",
            )
        return data
    return Dataset.from_frame(data, weights)


def _order_explanatory(
    dataset: Dataset,
    formula: Formula,
    variables: Mapping[str, VariableInfo],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> Formula:
    # a * b 로 묶은 항은 사용자가 준 순서를 유지한다
    if not formula.response or len(formula.explanatory) < 2 or formula.composite:
        return formula
    ranked = rank_explanatory(dataset, formula.response, formula.explanatory, variables, options, trace)
    ordered = tuple(column for column, _ in ranked)
    if ordered == formula.explanatory:
        return formula
    return formula.model_copy(update={"explanatory": ordered})


def _per_level_counts(dataset: Dataset, column: str) -> Tuple[int, int]:
    positive = dataset.weight_array() > 0
    labels = level_labels(dataset.column(column))[positive]
    counts = labels.value_counts()
    return int(counts.max()), int(counts.min())


def _selection_input(
    dataset: Dataset,
    formula: Formula,
    variables: Mapping[str, VariableInfo],
) -> SelectionInput:
    plotted = formula.plotted
    kinds = tuple(variables[c].kind for c in plotted)
    max_per_level: Optional[int] = None
    min_per_level: Optional[int] = None
    if len(plotted) == 2 and kinds[0].is_categorical != kinds[1].is_categorical:
        categorical = plotted[0] if kinds[0].is_categorical else plotted[1]
        max_per_level, min_per_level = _per_level_counts(dataset, categorical)
    return SelectionInput(
        kinds=kinds,
        n_levels=tuple(variables[c].n_levels for c in plotted),
        n_rows=dataset.n_rows,
        has_response=formula.response is not None,
        max_per_level=max_per_level,
        min_per_level=min_per_level,
    )


def _numeric_axis(
    dataset: Dataset,
    column: str,
    channel: str,
    info: VariableInfo,
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> AxisSpec:
    series = dataset.column(column)
    if pdt.is_datetime64_any_dtype(series) or pdt.is_timedelta64_dtype(series):
        record_trace(trace, "axis_transform", "skipped", {"column": column, "message": "time axis"})
        transform = AxisTransform.NONE
    else:
        transform = select_axis_transform(
            numeric_values(series),
            dataset.weight_array(),
            options,
            trace,
            column,
        )
    return AxisSpec(column=column, channel=channel, kind=info.kind, transform=transform)


def _categorical_axis(
    layout: _Layout,
    dataset: Dataset,
    column: str,
    channel: str,
    info: VariableInfo,
    trace: Optional[List[Dict[str, Any]]],
    *,
    by: Optional[str] = None,
    by_info: Optional[VariableInfo] = None,
) -> None:
    by_levels: Sequence[str] = ()
    if by is not None and by in layout.orders:
        by_levels = layout.orders[by].levels
    order = order_levels(
        dataset,
        column,
        info.kind,
        by=by,
        by_kind=by_info.kind if by_info is not None else None,
        by_levels=by_levels,
        trace=trace,
    )
    layout.orders[column] = order
    layout.axes.append(AxisSpec(column=column, channel=channel, kind=info.kind))
    layout.grid_labels[column] = level_labels(dataset.column(column))


def _grid_axis(
    layout: _Layout,
    dataset: Dataset,
    column: str,
    channel: str,
    info: VariableInfo,
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
    *,
    by: Optional[str] = None,
    by_info: Optional[VariableInfo] = None,
) -> None:
    if info.kind is not VariableKind.NUMERIC:
        _categorical_axis(layout, dataset, column, channel, info, trace, by=by, by_info=by_info)
        return
    labels, disc = discretize(dataset, column, options.n_bins)
    layout.orders[column] = LevelOrder(column=column, levels=disc.labels, basis="bins")
    layout.axes.append(AxisSpec(column=column, channel=channel, kind=info.kind, discretization=disc))
    layout.grid_labels[column] = labels
    record_trace(
        trace,
        "discretizer",
        "binned",
        {"column": column, "edges": list(disc.edges), "n_bins": len(disc.labels)},
    )


def _layout_single(
    archetype: PlotArchetype,
    dataset: Dataset,
    column: str,
    info: VariableInfo,
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> _Layout:
    layout = _Layout()
    if archetype is PlotArchetype.DENSITY:
        layout.axes.append(_numeric_axis(dataset, column, "x", info, options, trace))
        layout.channels = {"x": column}
    elif archetype is PlotArchetype.DOT_CHART:
        _categorical_axis(layout, dataset, column, "y", info, trace)
        layout.channels = {"x": WEIGHT_CHANNEL, "y": column, "orientation": "h"}
    else:
        _categorical_axis(layout, dataset, column, "x", info, trace)
        layout.channels = {"x": column, "y": WEIGHT_CHANNEL}
    return layout


def _layout_pair(
    choice: ArchetypeChoice,
    dataset: Dataset,
    x: str,
    y: str,
    variables: Mapping[str, VariableInfo],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> _Layout:
    archetype = choice.archetype
    layout = _Layout()
    if archetype in (PlotArchetype.SCATTER, PlotArchetype.HEXBIN):
        layout.axes.append(_numeric_axis(dataset, x, "x", variables[x], options, trace))
        layout.axes.append(_numeric_axis(dataset, y, "y", variables[y], options, trace))
        layout.channels = {"x": x, "y": y}
        if archetype is PlotArchetype.HEXBIN:
            layout.channels["color"] = WEIGHT_CHANNEL
        return layout

    if archetype in (PlotArchetype.VIOLIN, PlotArchetype.BOXPLOT, PlotArchetype.BAR):
        categorical, numeric = (x, y) if variables[x].kind.is_categorical else (y, x)
        cat_channel, num_channel = ("y", "x") if choice.orientation == "h" else ("x", "y")
        _categorical_axis(
            layout,
            dataset,
            categorical,
            cat_channel,
            variables[categorical],
            trace,
            by=numeric,
            by_info=variables[numeric],
        )
        layout.axes.append(_numeric_axis(dataset, numeric, num_channel, variables[numeric], options, trace))
        layout.channels = {cat_channel: categorical, num_channel: numeric, "orientation": choice.orientation}
        return layout

    # spine / heatmap: y를 먼저 정렬하고 x는 y의 최빈값 순위로 정렬
    _categorical_axis(layout, dataset, y, "y", variables[y], trace)
    _categorical_axis(layout, dataset, x, "x", variables[x], trace, by=y, by_info=variables[y])
    if archetype is PlotArchetype.SPINE:
        layout.channels = {"x": x, "y": y, "color": y}
    else:
        layout.channels = {"x": x, "y": y, "color": WEIGHT_CHANNEL}
    return layout


def _layout_triple(
    archetype: PlotArchetype,
    dataset: Dataset,
    response: str,
    first: str,
    second: str,
    variables: Mapping[str, VariableInfo],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> _Layout:
    layout = _Layout(color_column=response)
    info = variables[response]
    if info.kind is VariableKind.NUMERIC:
        layout.axes.append(_numeric_axis(dataset, response, "color", info, options, trace))
    else:
        _categorical_axis(layout, dataset, response, "color", info, trace)

    if archetype is PlotArchetype.SPINE:
        _categorical_axis(layout, dataset, first, "x", variables[first], trace, by=response, by_info=info)
        _categorical_axis(layout, dataset, second, "y", variables[second], trace, by=response, by_info=info)
    else:
        _grid_axis(layout, dataset, first, "x", variables[first], options, trace, by=response, by_info=info)
        _grid_axis(layout, dataset, second, "y", variables[second], options, trace, by=response, by_info=info)
    layout.channels = {"x": first, "y": second, "color": response}
    return layout


def _layout(
    choice: ArchetypeChoice,
    dataset: Dataset,
    formula: Formula,
    variables: Mapping[str, VariableInfo],
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> _Layout:
    plotted = formula.plotted
    if len(plotted) == 1:
        column = plotted[0]
        return _layout_single(choice.archetype, dataset, column, variables[column], options, trace)
    if len(plotted) == 2:
        # response는 y축, 설명변수는 x축
        if formula.response:
            x, y = formula.explanatory[0], formula.response
        else:
            x, y = formula.explanatory
        return _layout_pair(choice, dataset, x, y, variables, options, trace)
    first, second = formula.explanatory
    return _layout_triple(choice.archetype, dataset, formula.response, first, second, variables, options, trace)


def _conditioning(
    archetype: PlotArchetype,
    dataset: Dataset,
    column: str,
    info: VariableInfo,
    options: EngineOptions,
    trace: Optional[List[Dict[str, Any]]],
) -> Tuple[ConditioningResolution, AxisSpec, LevelOrder, pd.Series]:
    discretization = None
    if info.kind is VariableKind.NUMERIC:
        labels, discretization = discretize(dataset, column, options.conditioning_bins)
        order = LevelOrder(column=column, levels=discretization.labels, basis="bins")
    else:
        labels = level_labels(dataset.column(column))
        order = order_levels(dataset, column, info.kind, trace=trace)

    resolution = resolve_conditioning(
        archetype,
        column,
        order.levels,
        level_weights(labels, dataset.weights),
        options,
        trace,
    )
    if resolution.color:
        channel = "color"
    elif resolution.facet_row:
        channel = "facet_row"
    else:
        channel = "facet_col"
    axis = AxisSpec(column=column, channel=channel, kind=info.kind, discretization=discretization)
    return resolution, axis, order, labels


def _heatmap(
    dataset: Dataset,
    layout: _Layout,
    variables: Mapping[str, VariableInfo],
    facet: Optional[FacetSpec],
    panel_labels: Optional[pd.Series],
) -> HeatmapGrid:
    x = layout.channels["x"]
    y = layout.channels["y"]
    color = layout.color_column
    color_kind = variables[color].kind if color else None
    color_levels = layout.orders[color].levels if color and color in layout.orders else ()
    x_levels = layout.orders[x].levels
    y_levels = layout.orders[y].levels
    x_labels = layout.grid_labels[x]
    y_labels = layout.grid_labels[y]

    if facet is None or panel_labels is None:
        return heatmap_cells(
            dataset,
            x_labels,
            y_labels,
            x_levels,
            y_levels,
            color_column=color,
            color_kind=color_kind,
            color_levels=color_levels,
        )

    panels = panel_labels.astype(str)
    if facet.other_label is not None:
        panels = panels.where(panels.isin(facet.levels), facet.other_label)
    cells = []
    for panel in facet.levels:
        positions = np.flatnonzero((panels == panel).to_numpy())
        if positions.size == 0:
            continue
        grid = heatmap_cells(
            dataset.take(positions),
            x_labels.iloc[positions],
            y_labels.iloc[positions],
            x_levels,
            y_levels,
            color_column=color,
            color_kind=color_kind,
            color_levels=color_levels,
        )
        cells.extend(cell.model_copy(update={"panel": panel}) for cell in grid.cells)
    return HeatmapGrid(
        x_levels=tuple(x_levels),
        y_levels=tuple(y_levels),
        value_column=color,
        value_kind=color_kind.value if color_kind is not None else "weight",
        cells=tuple(cells),
    )


def _decorations(
    archetype: PlotArchetype,
    dataset: Dataset,
    layout: _Layout,
    options: EngineOptions,
) -> Decorations:
    n_rows = dataset.n_rows
    if archetype is PlotArchetype.DENSITY:
        return Decorations(
            median_line=True,
            rug=n_rows <= options.rug_max_rows,
            defaults={"histnorm": "probability density"},
        )
    if archetype is PlotArchetype.VIOLIN:
        return Decorations(median_line=True, defaults={"scale": "width"})
    if archetype is PlotArchetype.BOXPLOT:
        return Decorations(defaults={"points": "outliers"})
    if archetype is PlotArchetype.SCATTER:
        return Decorations(
            smooth=n_rows >= options.smooth_min_rows,
            defaults={"smooth": "binned-median", "smooth_bins": max(options.n_bins, 10)},
        )
    if archetype is PlotArchetype.HEXBIN:
        return Decorations(defaults={"gridsize": _HEXBIN_GRIDSIZE})
    if archetype is PlotArchetype.DOT_CHART:
        column = layout.channels.get("y")
        basis = layout.orders[column].basis if column in layout.orders else "frequency"
        return Decorations(defaults={"sort": basis})
    if archetype is PlotArchetype.SPINE:
        return Decorations(defaults={"normalize": True})
    if archetype is PlotArchetype.HEATMAP:
        return Decorations(defaults={"missing": "no data"})
    return Decorations()


# 입력: data(DataFrame/행 목록/Dataset), formula, weights, options, trace
# 출력: PlotSpec (불변)
# 잘못된 요청은 InvalidFormula / UnsupportedVariableCombination / EmptyDataset 로 바로 올린다
def build_plot_spec(
    data: DataInput,
    formula: FormulaInput,
    *,
    weights: WeightsArg = None,
    options: OptionsInput = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> PlotSpec:
    opts = resolve_options(options)
    steps = trace if trace is not None else ([] if opts.verbose else None)
    first_step = len(steps) if steps is not None else 0
    request_id = new_request_id()

    dataset = _load_dataset(data, weights)
    log_event(
        "engine.start",
        {
            "request_id": request_id,
            "rows": dataset.n_rows,
            "columns": len(dataset.columns),
            "weighted": dataset.is_weighted,
        },
    )

    normalized = normalize_formula(formula, dataset.columns)
    if isinstance(formula, Formula) and formula.wildcard:
        normalized = normalized.model_copy(update={"wildcard": True})
    record_trace(steps, "formula", "normalized", {"formula": formula_to_text(normalized)})

    dataset, sampling = sample_dataset(dataset, opts, trace=steps)
    dataset = dataset.complete_cases(normalized.columns)
    dataset.ensure_not_empty("complete_cases", normalized.columns)

    variables = classify_variables(dataset, normalized.columns, opts, steps)
    normalized = _order_explanatory(dataset, normalized, variables, opts, steps)

    choice = select_archetype(_selection_input(dataset, normalized, variables), opts)
    archetype = choice.archetype
    record_trace(
        steps,
        "plot_selector",
        "selected",
        {
            "archetype": archetype.value,
            "primary": choice.primary.value,
            "orientation": choice.orientation,
            "reason": choice.reason,
        },
    )

    layout = _layout(choice, dataset, normalized, variables, opts, steps)

    facet: Optional[FacetSpec] = None
    panel_labels: Optional[pd.Series] = None
    if normalized.conditioning:
        column = normalized.conditioning
        resolution, axis, order, panel_labels = _conditioning(
            archetype, dataset, column, variables[column], opts, steps
        )
        layout.axes.append(axis)
        layout.orders[column] = order
        facet = resolution.facet
        if resolution.color:
            layout.channels["color"] = resolution.color
        if resolution.facet_row:
            layout.channels["facet_row"] = resolution.facet_row
        if resolution.facet_col:
            layout.channels["facet_col"] = resolution.facet_col

    heatmap = None
    if archetype is PlotArchetype.HEATMAP:
        heatmap = _heatmap(dataset, layout, variables, facet, panel_labels)

    overplot = None
    if archetype in (PlotArchetype.SCATTER, PlotArchetype.HEXBIN):
        overplot = select_overplot_remedy(
            dataset,
            layout.channels["x"],
            layout.channels["y"],
            archetype,
            opts,
            opts.seed,
            steps,
        )
        if overplot is not None and overplot.kind is RemedyKind.SIZE:
            layout.channels["size"] = WEIGHT_CHANNEL

    reason = choice.reason
    if dataset.is_weighted:
        reason = f"{reason}; rows weighted"
    if sampling.sampled:
        reason = f"{reason}; sampled {sampling.kept_rows} of {sampling.original_rows} rows"

    spec = PlotSpec(
        archetype=archetype,
        fallback_from=choice.primary if choice.fallback_used else None,
        formula=normalized,
        variables=tuple(variables[c] for c in normalized.columns),
        axes=tuple(layout.axes),
        level_orders=tuple(layout.orders.values()),
        channels=ChannelBindings(**layout.channels),
        facet=facet,
        overplot=overplot,
        heatmap=heatmap,
        decorations=_decorations(archetype, dataset, layout, opts),
        sampling=sampling,
        reason=reason,
    )

    log_event(
        "engine.archetype.selected",
        {
            "request_id": request_id,
            "formula": formula_to_text(normalized),
            "archetype": archetype.value,
            "fallback_from": spec.fallback_from.value if spec.fallback_from else None,
            "rows": dataset.n_rows,
            "reason": reason,
        },
    )
    if opts.verbose and steps:
        for entry in steps[first_step:]:
            log_event("engine.decision", {"request_id": request_id, **entry})
    return spec


def _overview_score(dataset: Dataset, formula: Formula, options: EngineOptions) -> Optional[float]:
    if not formula.response or not formula.explanatory:
        return None
    subset = dataset.complete_cases(formula.plotted)
    if subset.n_rows == 0 or subset.total_weight <= 0:
        return float("inf")
    kinds = classify_variables(subset, formula.plotted, options)
    return conditional_entropy(subset, formula.response, formula.explanatory[0], kinds, options)


def build_overview(
    data: DataInput,
    formula: FormulaInput,
    *,
    weights: WeightsArg = None,
    options: OptionsInput = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> List[PlotSpec]:
    """One PlotSpec per candidate explanatory column, most informative first."""
    opts = resolve_options(options)
    dataset = _load_dataset(data, weights)
    formulas = expand_wildcard(formula, dataset.columns)
    scoring, _ = sample_dataset(dataset, opts)

    scored = [(idx, f, _overview_score(scoring, f, opts)) for idx, f in enumerate(formulas)]
    if all(score is not None for _, _, score in scored):
        scored.sort(key=lambda item: (round(item[2], 12), item[0]))
    record_trace(
        trace,
        "overview",
        "ranked",
        {"scores": {formula_to_text(f): score for _, f, score in scored}},
    )
    log_event("engine.overview", {"plots": len(scored), "rows": dataset.n_rows})
    return [build_plot_spec(dataset, f, options=opts, trace=trace) for _, f, _ in scored]


def random_plot(
    data: DataInput,
    *,
    seed: Optional[int] = None,
    weights: WeightsArg = None,
    options: OptionsInput = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> PlotSpec:
    """Pick one to three columns with a seeded generator and plot them."""
    opts = resolve_options(options)
    dataset = _load_dataset(data, weights)
    rng = np.random.default_rng(seed if seed is not None else opts.seed)
    columns = dataset.columns
    if not columns:
        raise InvalidFormula("dataset has no columns to plot", stage="random_plot")
    count = int(rng.integers(1, min(3, len(columns)) + 1))
    picked = [str(c) for c in rng.choice(np.asarray(columns, dtype=object), size=count, replace=False)]
    if count == 1:
        request: Dict[str, Any] = {"explanatory": picked}
    else:
        request = {"response": picked[0], "explanatory": picked[1:]}
    log_event("engine.random_plot", {"seed": seed, "columns": picked})
    return build_plot_spec(dataset, request, options=opts, trace=trace)


def build_many(
    requests: Sequence[Mapping[str, Any]],
    *,
    max_workers: Optional[int] = None,
) -> List[PlotSpec]:
    """Run independent build_plot_spec calls on a thread pool; results keep request order."""
    if not requests:
        return []

    def _run(request: Mapping[str, Any]) -> PlotSpec:
        return build_plot_spec(
            request["data"],
            request["formula"],
            weights=request.get("weights"),
            options=request.get("options"),
        )

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(_run, requests))

"""차트 아키타입 결정 테이블.

- 변수 종류 튜플(response, explanatory...)과 레벨/행 수로 아키타입을 고른다.
- 위쪽 규칙이 우선이며, fallback 조건은 규칙이 매칭된 뒤에만 평가한다.
- 같은 입력이면 항상 같은 결과 (결정적).
"""
from __future__ import annotations

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.errors import UnsupportedVariableCombination
from autoplot.models.plot_spec import PlotArchetype, VariableKind


class SelectionInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    # response가 있으면 맨 앞, 이후 설명변수 순서
    kinds: Tuple[VariableKind, ...]
    n_levels: Tuple[int, ...]
    n_rows: int
    has_response: bool = False
    # 수치형-범주형 조합에서 범주 레벨별 관측 수의 최대/최소
    max_per_level: Optional[int] = None
    min_per_level: Optional[int] = None


class ArchetypeChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    archetype: PlotArchetype
    primary: PlotArchetype
    orientation: str = "v"
    reason: str

    @property
    def fallback_used(self) -> bool:
        return self.archetype is not self.primary


def _choice(
    primary: PlotArchetype,
    reason: str,
    *,
    fallback: Optional[PlotArchetype] = None,
    orientation: str = "v",
) -> ArchetypeChoice:
    return ArchetypeChoice(
        archetype=fallback or primary,
        primary=primary,
        orientation=orientation,
        reason=reason,
    )


def _select_single(kind: VariableKind, levels: int, options: EngineOptions) -> ArchetypeChoice:
    if kind is VariableKind.NUMERIC:
        return _choice(PlotArchetype.DENSITY, "single numeric variable: density")
    # 레벨이 적으면 점 배열만으로는 방향(크기 비교)이 드러나지 않아 막대를 쓴다
    if levels <= options.bar_max_levels:
        return _choice(
            PlotArchetype.DOT_CHART,
            f"single categorical variable with {levels} levels (<= {options.bar_max_levels}): bar",
            fallback=PlotArchetype.BAR,
        )
    return _choice(PlotArchetype.DOT_CHART, f"single categorical variable with {levels} levels: dot chart")


def _select_pair(selection: SelectionInput, options: EngineOptions) -> ArchetypeChoice:
    first, second = selection.kinds
    levels_first, levels_second = selection.n_levels

    if first is VariableKind.NUMERIC and second is VariableKind.NUMERIC:
        if selection.n_rows > options.hexbin_threshold:
            return _choice(
                PlotArchetype.SCATTER,
                f"numeric pair with {selection.n_rows} rows (> {options.hexbin_threshold}): hexbin",
                fallback=PlotArchetype.HEXBIN,
            )
        return _choice(PlotArchetype.SCATTER, "numeric pair: scatter")

    if first.is_categorical and second.is_categorical:
        widest = max(levels_first, levels_second)
        if widest > options.spine_max_levels:
            return _choice(
                PlotArchetype.SPINE,
                f"categorical pair with {widest} levels (> {options.spine_max_levels}): heatmap",
                fallback=PlotArchetype.HEATMAP,
            )
        return _choice(PlotArchetype.SPINE, "categorical pair: spine plot")

    # 수치형 + 범주형: 범주가 response이면 가로 방향
    categorical_is_response = selection.has_response and first.is_categorical
    orientation = "h" if categorical_is_response else "v"
    levels = levels_first if first.is_categorical else levels_second
    max_per_level = selection.max_per_level
    min_per_level = selection.min_per_level

    if max_per_level is not None and max_per_level <= 1:
        return _choice(
            PlotArchetype.VIOLIN,
            "numeric by categorical with one observation per level: bar",
            fallback=PlotArchetype.BAR,
            orientation=orientation,
        )
    if levels > options.violin_max_levels:
        return _choice(
            PlotArchetype.VIOLIN,
            f"numeric by categorical with {levels} levels (> {options.violin_max_levels}): boxplot",
            fallback=PlotArchetype.BOXPLOT,
            orientation=orientation,
        )
    if min_per_level is not None and min_per_level <= 1:
        return _choice(
            PlotArchetype.VIOLIN,
            "numeric by categorical with a single-observation level: boxplot",
            fallback=PlotArchetype.BOXPLOT,
            orientation=orientation,
        )
    return _choice(PlotArchetype.VIOLIN, "numeric by categorical: violin", orientation=orientation)


def _select_triple(selection: SelectionInput, options: EngineOptions) -> ArchetypeChoice:
    response, first, second = selection.kinds
    if first.is_categorical and second.is_categorical:
        widest = max(selection.n_levels)
        if not response.is_categorical:
            return _choice(
                PlotArchetype.SPINE,
                "response is numeric over a categorical grid: heatmap",
                fallback=PlotArchetype.HEATMAP,
            )
        if widest > options.spine_max_levels:
            return _choice(
                PlotArchetype.SPINE,
                f"three categorical variables with {widest} levels (> {options.spine_max_levels}): heatmap",
                fallback=PlotArchetype.HEATMAP,
            )
        return _choice(PlotArchetype.SPINE, "three categorical variables: mosaic")
    return _choice(PlotArchetype.HEATMAP, "response over a grid with a numeric axis: heatmap")


# 입력: SelectionInput, options
# 출력: ArchetypeChoice
def select_archetype(selection: SelectionInput, options: EngineOptions) -> ArchetypeChoice:
    count = len(selection.kinds)
    if count != len(selection.n_levels):
        raise UnsupportedVariableCombination(
            "kinds and level counts differ in length",
            stage="plot_selector",
        )
    if count == 1:
        return _select_single(selection.kinds[0], selection.n_levels[0], options)
    if count == 2:
        return _select_pair(selection, options)
    if count == 3 and selection.has_response:
        return _select_triple(selection, options)
    raise UnsupportedVariableCombination(
        f"cannot plot {count} variables"
        + ("" if selection.has_response or count != 3 else " without a response"),
        stage="plot_selector",
    )

"""엔진 옵션 로딩 유틸.

- 기본값은 프로세스 시작 시 한 번 .env / 환경변수에서 읽어 고정한다.
- 호출마다 옵션을 명시적으로 넘기고, 전역 상태는 읽기 전용으로만 쓴다.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Load project-level .env regardless of current working directory.
_DOTENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_DOTENV_PATH)

OverplotChoice = Literal["auto", "size", "jitter", "none"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float) -> float:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_seed(name: str) -> Optional[int]:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


# 입력: 호출자가 넘긴 옵션 키
# 출력: EngineOptions 모델
# 임계값들은 경험적으로 조정하는 기본값이며 모두 덮어쓸 수 있다
class EngineOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # 결정 과정(엔트로피, 차트 선택 이유, 변환)을 로그로 남길지 여부
    verbose: bool = False
    # 행 수가 sample_ceiling을 넘으면 다른 단계 전에 표본 추출
    sampling: bool = True
    sample_ceiling: int = Field(default=100_000, ge=1)
    # 조건 변수를 color로 묶을 수 있는 최대 레벨 수
    max_colors: int = Field(default=8, ge=1)
    max_facet_rows: int = Field(default=4, ge=1)
    max_facet_cols: int = Field(default=4, ge=1)
    # IQR 점유율이 identity 대비 이 배수를 넘어야 log 계열 변환을 선택
    transform_threshold: float = Field(default=2.0, gt=0)
    overplot_remedy: OverplotChoice = "auto"
    # 저카디널리티 수치형을 범주형으로 재분류
    discrete_as_categorical: bool = True
    discrete_threshold: int = Field(default=4, ge=1)
    seed: Optional[int] = None
    hexbin_threshold: int = Field(default=10_000, ge=1)
    spine_max_levels: int = Field(default=8, ge=1)
    violin_max_levels: int = Field(default=12, ge=1)
    bar_max_levels: int = Field(default=3, ge=0)
    n_bins: int = Field(default=5, ge=1)
    conditioning_bins: int = Field(default=4, ge=1)
    duplicate_tolerance: float = Field(default=0.01, ge=0)
    jitter_fraction: float = Field(default=0.02, gt=0, le=0.5)
    rug_max_rows: int = Field(default=500, ge=0)
    smooth_min_rows: int = Field(default=10, ge=2)


def load_default_options() -> EngineOptions:
    """Build the process-wide defaults from AUTOPLOT_* environment variables."""
    base = EngineOptions()
    return EngineOptions(
        verbose=_env_bool("AUTOPLOT_VERBOSE", base.verbose),
        sampling=_env_bool("AUTOPLOT_SAMPLING", base.sampling),
        sample_ceiling=_env_int("AUTOPLOT_SAMPLE_CEILING", base.sample_ceiling),
        max_colors=_env_int("AUTOPLOT_MAX_COLORS", base.max_colors),
        max_facet_rows=_env_int("AUTOPLOT_MAX_FACET_ROWS", base.max_facet_rows),
        max_facet_cols=_env_int("AUTOPLOT_MAX_FACET_COLS", base.max_facet_cols),
        transform_threshold=_env_float("AUTOPLOT_TRANSFORM_THRESHOLD", base.transform_threshold),
        discrete_as_categorical=_env_bool("AUTOPLOT_DISCRETE_AS_CATEGORICAL", base.discrete_as_categorical),
        discrete_threshold=_env_int("AUTOPLOT_DISCRETE_THRESHOLD", base.discrete_threshold),
        seed=_env_seed("AUTOPLOT_SEED"),
        hexbin_threshold=_env_int("AUTOPLOT_HEXBIN_THRESHOLD", base.hexbin_threshold),
        spine_max_levels=_env_int("AUTOPLOT_SPINE_MAX_LEVELS", base.spine_max_levels),
        violin_max_levels=_env_int("AUTOPLOT_VIOLIN_MAX_LEVELS", base.violin_max_levels),
    )


# 프로세스 전역 기본값 (초기화 이후 읽기 전용)
DEFAULT_OPTIONS = load_default_options()


def resolve_options(
    options: Union[EngineOptions, Mapping[str, Any], None] = None,
) -> EngineOptions:
    """Merge caller overrides over the read-only defaults."""
    if options is None:
        return DEFAULT_OPTIONS
    if isinstance(options, EngineOptions):
        return options
    merged: Dict[str, Any] = DEFAULT_OPTIONS.model_dump()
    merged.update(dict(options))
    # model_validate로 다시 검증해야 extra 키/범위 오류가 잡힌다
    return EngineOptions.model_validate(merged)

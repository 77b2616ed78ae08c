"""Row sampling for large datasets."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from autoplot.config.engine_config import EngineOptions
from autoplot.engine.dataset import Dataset
from autoplot.models.plot_spec import SamplingInfo
from autoplot.utils.logging import log_event, record_trace


def sample_positions(n_rows: int, ceiling: int, rng: np.random.Generator) -> np.ndarray:
    """Sorted positions of `ceiling` rows drawn without replacement."""
    picked = rng.choice(n_rows, size=ceiling, replace=False)
    picked.sort()
    return picked


# 입력: dataset, options, rng(선택)
# 출력: (표본 dataset, SamplingInfo)
# 원래 가중치는 그대로 유지 (재정규화하지 않음), 행 수는 절대 늘지 않는다
def sample_dataset(
    dataset: Dataset,
    options: EngineOptions,
    rng: Optional[np.random.Generator] = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> Tuple[Dataset, SamplingInfo]:
    n_rows = dataset.n_rows
    if not options.sampling or n_rows <= options.sample_ceiling:
        return dataset, SamplingInfo(sampled=False, original_rows=n_rows, kept_rows=n_rows, seed=options.seed)

    seed = options.seed
    if rng is None:
        # seed가 없으면 새로 뽑아 SamplingInfo에 남긴다
        if seed is None:
            seed = int(np.random.default_rng().integers(0, 2**32))
        rng = np.random.default_rng(seed)
    positions = sample_positions(n_rows, options.sample_ceiling, rng)
    sampled = dataset.take(positions)
    info = SamplingInfo(
        sampled=True,
        original_rows=n_rows,
        kept_rows=sampled.n_rows,
        seed=seed,
    )
    payload = {
        "original_rows": n_rows,
        "kept_rows": sampled.n_rows,
        "seed": seed,
        "kept_weight_share": sampled.total_weight / dataset.total_weight,
    }
    log_event("sampler.sampled", payload)
    record_trace(trace, "sampler", "sampled", payload)
    return sampled, info

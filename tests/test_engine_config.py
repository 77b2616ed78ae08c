from __future__ import annotations

import json
import logging

import pytest
from pydantic import ValidationError

from autoplot.config.engine_config import DEFAULT_OPTIONS, EngineOptions, load_default_options, resolve_options
from autoplot.utils.logging import log_event, new_request_id, record_trace


def test_env_overrides_defaults(monkeypatch) -> None:
    monkeypatch.setenv("AUTOPLOT_SAMPLE_CEILING", "5000")
    monkeypatch.setenv("AUTOPLOT_VERBOSE", "yes")
    monkeypatch.setenv("AUTOPLOT_SEED", "17")
    monkeypatch.setenv("AUTOPLOT_TRANSFORM_THRESHOLD", "not-a-number")

    options = load_default_options()

    assert options.sample_ceiling == 5000
    assert options.verbose is True
    assert options.seed == 17
    assert options.transform_threshold == EngineOptions().transform_threshold


def test_resolve_options_merges_mapping() -> None:
    options = resolve_options({"max_colors": 3})

    assert options.max_colors == 3
    assert options.hexbin_threshold == DEFAULT_OPTIONS.hexbin_threshold
    assert resolve_options(None) is DEFAULT_OPTIONS


def test_resolve_options_rejects_unknown_or_out_of_range() -> None:
    with pytest.raises(ValidationError):
        resolve_options({"max_colour": 3})
    with pytest.raises(ValidationError):
        resolve_options({"sample_ceiling": 0})


def test_options_are_read_only() -> None:
    with pytest.raises(ValidationError):
        DEFAULT_OPTIONS.max_colors = 1


def test_log_event_writes_one_json_line(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="autoplot"):
        log_event("engine.start", {"rows": 3, "request_id": new_request_id()})

    record = json.loads(caplog.records[-1].getMessage())
    assert record["event"] == "engine.start"
    assert record["service"] == "autoplot-engine"
    assert record["rows"] == 3
    assert record["request_id"].startswith("ap-")


def test_record_trace_is_noop_without_list() -> None:
    trace: list = []

    record_trace(None, "sampler", "sampled", {"kept_rows": 1})
    record_trace(trace, "sampler", "sampled", {"kept_rows": 1})

    assert trace == [{"stage": "sampler", "event": "sampled", "kept_rows": 1}]

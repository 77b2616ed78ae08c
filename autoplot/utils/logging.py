"""Structured logging helpers for the plot decision engine."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

_LOGGER_NAME = "autoplot"
_SERVICE_NAME = "autoplot-engine"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _configured_level() -> int:
    name = str(os.getenv("AUTOPLOT_LOG_LEVEL", "INFO")).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger() -> logging.Logger:
    """Shared engine logger; handler is attached once per process."""
    logger = logging.getLogger(_LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(_configured_level())
    return logger


def new_request_id() -> str:
    """Id that ties together every log line of one build_plot_spec call."""
    return f"ap-{uuid4().hex[:12]}"


# 입력: 점(.)으로 구분한 이벤트 이름 (engine.start, render.success 등), payload
# 출력: JSON 한 줄 로그
def log_event(
    event: str,
    payload: Dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> None:
    logger = get_logger()
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if not logger.isEnabledFor(numeric_level):
        return

    record: Dict[str, Any] = {
        "event": event,
        "ts": datetime.now(timezone.utc).isoformat(),
        "service": _SERVICE_NAME,
        "level": logging.getLevelName(numeric_level).lower(),
        **(payload or {}),
    }
    # numpy scalar, Enum 등은 문자열로
    logger.log(numeric_level, "%s", json.dumps(record, ensure_ascii=False, default=str))


def record_trace(
    trace: List[Dict[str, Any]] | None,
    stage: str,
    event: str,
    payload: Dict[str, Any] | None = None,
) -> None:
    """Append one decision record to the caller's trace list, if any."""
    if trace is None:
        return
    trace.append({"stage": stage, "event": event, **(payload or {})})

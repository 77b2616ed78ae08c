"""Error types raised by the decision engine."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class AutoplotError(ValueError):
    """Base error carrying the stage and the columns involved."""

    code = "AUTOPLOT_ERROR"

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        columns: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.columns: List[str] = [str(c) for c in (columns or [])]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "columns": self.columns,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"stage={self.stage}")
        if self.columns:
            parts.append(f"columns={', '.join(self.columns)}")
        return " | ".join(parts)


class InvalidFormula(AutoplotError):
    code = "INVALID_FORMULA"


class UnsupportedVariableCombination(AutoplotError):
    code = "UNSUPPORTED_VARIABLE_COMBINATION"


class EmptyDataset(AutoplotError):
    code = "EMPTY_DATASET"


class DegenerateDistribution(AutoplotError):
    code = "DEGENERATE_DISTRIBUTION"


class InvalidWeights(AutoplotError):
    code = "INVALID_WEIGHTS"

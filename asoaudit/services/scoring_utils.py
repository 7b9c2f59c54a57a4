"""Small numeric helpers shared by the KPI, formula and recommendation stages."""

import operator
from typing import Callable, Dict, Optional, Sequence

from .models import Threshold

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def compare(left: float, op: str, right: float) -> bool:
    try:
        return _OPERATORS[op](left, right)
    except KeyError:
        raise ValueError(f"Unknown comparison operator: {op!r}")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def apply_thresholds(thresholds: Sequence[Threshold], value: float, default: float = 0.0) -> float:
    """Score of the first threshold the value satisfies, in declared order."""
    for threshold in thresholds:
        if compare(value, threshold.operator, threshold.value):
            return threshold.score
    return default


def safe_ratio(numerator: float, denominator: float) -> Optional[float]:
    if not denominator:
        return None
    return numerator / denominator

"""Period-over-period KPI results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

from .aggregation import MetricDefinition, _float

__all__ = ["MetricResult", "change_percent", "compare_metrics"]


def change_percent(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def _is_favorable(current: float, previous: float, higher_is_better: Any) -> bool:
    if higher_is_better is None:
        return current >= previous
    return (current >= previous) == bool(higher_is_better)


@dataclass(frozen=True)
class MetricResult:
    key: str
    label: str
    current_value: float
    previous_value: float
    change_percent: float
    is_favorable: bool
    format_hint: str = "number"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "value": round(self.current_value, 4),
            "currentValue": round(self.current_value, 4),
            "previousValue": round(self.previous_value, 4),
            "change": round(self.change_percent, 2),
            "changePercent": round(self.change_percent, 2),
            "isFavorable": self.is_favorable,
            "isPositive": self.is_favorable,
            "format": self.format_hint,
        }


def compare_metrics(
    current_totals: Mapping[str, Any],
    previous_totals: Optional[Mapping[str, Any]],
    metrics: Sequence[MetricDefinition],
) -> Dict[str, MetricResult]:
    """Pair current and previous window totals for every metric.

    ``previous_totals`` of ``None`` means there is no previous window: changes
    report 0 and every metric reads as favorable.
    """
    results: Dict[str, MetricResult] = {}
    for metric in metrics:
        current = _float(current_totals.get(metric.key))
        if previous_totals is None:
            previous, change, favorable = 0.0, 0.0, True
        else:
            previous = _float(previous_totals.get(metric.key))
            change = change_percent(current, previous)
            favorable = _is_favorable(current, previous, metric.higher_is_better)
        results[metric.key] = MetricResult(
            key=metric.key,
            label=metric.label,
            current_value=current,
            previous_value=previous,
            change_percent=change,
            is_favorable=favorable,
            format_hint=metric.format_hint,
        )
    return results

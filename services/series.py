"""Chart series pairing each current day with its offset previous day."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .aggregation import MetricDefinition
from .periods import DateWindow

__all__ = ["ChartPoint", "assemble_series", "format_day_label"]


def format_day_label(day: date) -> str:
    return f"{day.day} {day.strftime('%b %Y')}"


@dataclass
class ChartPoint:
    day: date
    previous_day: Optional[date]
    current: Dict[str, float] = field(default_factory=dict)
    previous: Dict[str, float] = field(default_factory=dict)
    chart_keys: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "date": format_day_label(self.day),
            "isoDate": self.day.isoformat(),
            "datePrev": format_day_label(self.previous_day) if self.previous_day else "",
            "previousIsoDate": self.previous_day.isoformat() if self.previous_day else None,
        }
        for key, value in self.current.items():
            payload[self.chart_keys.get(key, key)] = round(value, 4)
        for key, value in self.previous.items():
            payload[f"{self.chart_keys.get(key, key)}Prev"] = round(value, 4)
        return payload


def _zero_values(metrics: Sequence[MetricDefinition]) -> Dict[str, float]:
    return {metric.key: 0.0 for metric in metrics}


def _apply_running_rates(
    values: Dict[str, float],
    running: Dict[str, float],
    metrics: Sequence[MetricDefinition],
    elapsed_days: int,
) -> None:
    """Replace daily rate values with the running total over elapsed weeks."""
    for metric in metrics:
        if metric.kind != "rate":
            continue
        running[metric.key] = running.get(metric.key, 0.0) + values.get(metric.numerator, 0.0)
        periods = elapsed_days / metric.per_days
        values[metric.key] = running[metric.key] / periods if periods else 0.0


def assemble_series(
    current_window: DateWindow,
    previous_window: Optional[DateWindow],
    offset_days: int,
    current_daily: Mapping[date, Mapping[str, float]],
    previous_daily: Mapping[date, Mapping[str, float]],
    metrics: Sequence[MetricDefinition],
) -> List[ChartPoint]:
    """Emit one point per day of ``current_window`` in chronological order.

    The previous day is ``day - offset_days``, not the same weekday or day of
    month. Days missing from either bucket map zero-fill. Rate metrics are
    cumulative: the numerator summed since the window start, spread over the
    weeks elapsed so far. Both sides use the current side's elapsed days.
    """
    chart_keys = {metric.key: metric.chart_name for metric in metrics}
    current_running: Dict[str, float] = {}
    previous_running: Dict[str, float] = {}
    points: List[ChartPoint] = []
    for elapsed_days, day in enumerate(current_window.iter_days(), start=1):
        current_values = _zero_values(metrics)
        current_values.update(current_daily.get(day, {}))
        _apply_running_rates(current_values, current_running, metrics, elapsed_days)

        previous_day: Optional[date] = None
        previous_values = _zero_values(metrics)
        if previous_window is not None:
            try:
                previous_day = day - timedelta(days=offset_days)
            except OverflowError:
                previous_day = None
            if previous_day is not None:
                previous_values.update(previous_daily.get(previous_day, {}))
            _apply_running_rates(previous_values, previous_running, metrics, elapsed_days)

        points.append(
            ChartPoint(
                day=day,
                previous_day=previous_day,
                current=current_values,
                previous=previous_values,
                chart_keys=chart_keys,
            )
        )
    return points

"""Bucket records by calendar day and reduce them to metric values."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from dateutil.parser import parse as dateutil_parse

from .periods import DateWindow

__all__ = [
    "AGGREGATION_KINDS",
    "AggregationResult",
    "DailyBucket",
    "MetricDefinition",
    "aggregate_records",
    "field_extractor",
    "local_day",
]

AGGREGATION_KINDS = ("count", "sum", "distinct_count", "average", "ratio", "rate")
DERIVED_KINDS = ("ratio", "rate")

Record = Mapping[str, Any]
Extractor = Callable[[Record, Optional[tzinfo]], Any]


def _float(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _valid_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float when it is a finite, non-negative number."""
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def local_day(value: Any, tz: Optional[tzinfo] = None) -> Optional[date]:
    """Return the local calendar day of a timestamp-like value.

    Aware timestamps are converted to ``tz`` first; naive ones are already
    local. Blank or unparseable values yield ``None``.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        try:
            parsed = dateutil_parse(str(value))
        except (TypeError, ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None and tz is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date()


def field_extractor(name: str) -> Extractor:
    def _extract(record: Record, tz: Optional[tzinfo] = None) -> Any:
        return record.get(name)

    _extract.__name__ = f"field_{name}"
    return _extract


@dataclass(frozen=True)
class MetricDefinition:
    """How the records of one bucket reduce to a single number.

    ``ratio`` divides two earlier metrics; ``rate`` spreads ``numerator`` over
    the bucket span in units of ``per_days`` (plantings per week, say).
    Extractors are called with the record and the reporting timezone.
    ``higher_is_better`` is ``None`` for metrics with no preferred direction.
    ``chart_key`` names the field the metric takes in chart points and
    defaults to ``key``.
    """

    key: str
    label: str
    kind: str
    extractor: Optional[Extractor] = None
    numerator: Optional[str] = None
    denominator: Optional[str] = None
    per_days: int = 7
    higher_is_better: Optional[bool] = True
    format_hint: str = "number"
    chart_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in AGGREGATION_KINDS:
            raise ValueError(f"Unknown aggregation kind '{self.kind}' for metric {self.key}")
        if self.kind in ("sum", "distinct_count", "average") and self.extractor is None:
            raise ValueError(f"Metric {self.key} needs an extractor")
        if self.kind == "ratio" and not (self.numerator and self.denominator):
            raise ValueError(f"Ratio metric {self.key} needs a numerator and denominator")
        if self.kind == "rate" and (not self.numerator or self.per_days <= 0):
            raise ValueError(f"Rate metric {self.key} needs a numerator and positive per_days")

    @property
    def derived(self) -> bool:
        return self.kind in DERIVED_KINDS

    @property
    def chart_name(self) -> str:
        return self.chart_key or self.key

    def describe(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "kind": self.kind,
            "format": self.format_hint,
            "higherIsBetter": self.higher_is_better,
            "chartKey": self.chart_name,
        }


@dataclass
class DailyBucket:
    day: date
    records: List[Record] = field(default_factory=list)
    values: Dict[str, float] = field(default_factory=dict)


@dataclass
class AggregationResult:
    window: DateWindow
    buckets: Dict[date, DailyBucket]
    totals: Dict[str, float]
    record_count: int

    @property
    def daily(self) -> Dict[date, Dict[str, float]]:
        return {day: bucket.values for day, bucket in self.buckets.items()}


def _reduce(
    records: Sequence[Record],
    metrics: Sequence[MetricDefinition],
    span_days: int,
    tz: Optional[tzinfo] = None,
) -> Dict[str, float]:
    values: Dict[str, float] = {}
    for metric in metrics:
        if metric.derived:
            continue
        if metric.kind == "count":
            values[metric.key] = float(len(records))
        elif metric.kind == "sum":
            values[metric.key] = sum(_float(metric.extractor(record, tz)) for record in records)
        elif metric.kind == "distinct_count":
            keys = {metric.extractor(record, tz) for record in records}
            keys.discard(None)
            keys.discard("")
            values[metric.key] = float(len(keys))
        elif metric.kind == "average":
            valid = [
                number
                for number in (_valid_number(metric.extractor(record, tz)) for record in records)
                if number is not None
            ]
            values[metric.key] = sum(valid) / len(valid) if valid else 0.0

    for metric in metrics:
        if metric.kind == "ratio":
            denominator = values.get(metric.denominator, 0.0)
            values[metric.key] = values.get(metric.numerator, 0.0) / denominator if denominator else 0.0
        elif metric.kind == "rate":
            periods = span_days / metric.per_days
            values[metric.key] = values.get(metric.numerator, 0.0) / periods if periods else 0.0
    return values


def aggregate_records(
    records: Sequence[Record],
    window: DateWindow,
    metrics: Sequence[MetricDefinition],
    *,
    timestamp: Callable[[Record], Any],
    tz: Optional[tzinfo] = None,
) -> AggregationResult:
    """Filter ``records`` to ``window`` and reduce them per day and in total.

    Records whose timestamp is missing or unparseable are dropped. Only days
    with at least one record get a bucket; callers zero-fill the gaps.
    """
    grouped: Dict[date, List[Record]] = {}
    in_window: List[Record] = []
    for record in records:
        day = local_day(timestamp(record), tz)
        if day is None or not window.contains(day):
            continue
        grouped.setdefault(day, []).append(record)
        in_window.append(record)

    buckets: Dict[date, DailyBucket] = {}
    for day in sorted(grouped):
        day_records = grouped[day]
        buckets[day] = DailyBucket(day=day, records=day_records, values=_reduce(day_records, metrics, 1, tz))

    totals = _reduce(in_window, metrics, window.days, tz)
    return AggregationResult(window=window, buckets=buckets, totals=totals, record_count=len(in_window))

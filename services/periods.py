"""Resolve range and comparison tokens into concrete date windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterator, Optional

from dateutil.parser import isoparse

__all__ = [
    "COMPARE_TOKENS",
    "DateWindow",
    "InvalidRangeError",
    "RANGE_TOKENS",
    "ResolvedPeriod",
    "parse_calendar_date",
    "resolve_period",
]


class InvalidRangeError(ValueError):
    """Raised when a requested date range cannot be resolved."""


RANGE_DAYS = {
    "last_7_days": 7,
    "last_30_days": 30,
    "last_90_days": 90,
}
RANGE_TOKENS = tuple(RANGE_DAYS) + ("all_time", "custom")

COMPARE_OFFSETS = {
    "previous_week": 7,
    "previous_month": 30,
    "previous_year": 365,
}
COMPARE_TOKENS = ("none", "previous_period") + tuple(COMPARE_OFFSETS) + ("custom_compare",)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar-day window."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidRangeError(
                f"Start date {self.start.isoformat()} is after end date {self.end.isoformat()}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def iter_days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def shift(self, days: int) -> "DateWindow":
        return DateWindow(self.start - timedelta(days=days), self.end - timedelta(days=days))

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "days": self.days}


@dataclass(frozen=True)
class ResolvedPeriod:
    range_token: str
    compare_token: str
    current: DateWindow
    previous: Optional[DateWindow]
    offset_days: int
    comparison_enabled: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "range": self.range_token,
            "compare": self.compare_token,
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict() if self.previous else None,
            "offsetDays": self.offset_days,
            "comparisonEnabled": self.comparison_enabled,
        }


def parse_calendar_date(value: Any, label: str = "date") -> Optional[date]:
    """Parse an ISO 8601 calendar date, returning ``None`` for blanks."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value).strip()).date()
    except (TypeError, ValueError, OverflowError):
        raise InvalidRangeError(f"Could not parse {label} '{value}'; expected YYYY-MM-DD")


def _explicit_window(start_value: Any, end_value: Any, *, prefix: str = "") -> DateWindow:
    start_label = f"{prefix}start_date"
    end_label = f"{prefix}end_date"
    start = parse_calendar_date(start_value, start_label)
    end = parse_calendar_date(end_value, end_label)
    if start is None or end is None:
        raise InvalidRangeError(f"Both {start_label} and {end_label} are required")
    if start > end:
        raise InvalidRangeError(f"{start_label} must be on or before {end_label}")
    return DateWindow(start, end)


def resolve_period(
    range_token: str = "last_30_days",
    compare_token: str = "none",
    *,
    start_date: Any = None,
    end_date: Any = None,
    compare_start_date: Any = None,
    compare_end_date: Any = None,
    today: Optional[date] = None,
) -> ResolvedPeriod:
    """Resolve the current and comparison windows for a request.

    A previous window is computed even for ``compare="none"`` so KPI change
    percentages always have a baseline; ``comparison_enabled`` tells the
    caller whether the previous series should be shown. ``all_time`` has no
    previous window, and neither does a ``none`` comparison whose implicit
    window would fall before ``date.min``.
    """
    range_token = (range_token or "last_30_days").strip()
    compare_token = (compare_token or "none").strip()
    if range_token not in RANGE_TOKENS:
        raise InvalidRangeError(
            f"Invalid range '{range_token}'; expected one of {sorted(RANGE_TOKENS)}"
        )
    if compare_token not in COMPARE_TOKENS:
        raise InvalidRangeError(
            f"Invalid compare '{compare_token}'; expected one of {sorted(COMPARE_TOKENS)}"
        )
    today = today or date.today()

    if range_token == "all_time":
        return ResolvedPeriod(
            range_token=range_token,
            compare_token="none",
            current=DateWindow(date.min, today),
            previous=None,
            offset_days=0,
            comparison_enabled=False,
        )

    if range_token == "custom":
        current = _explicit_window(start_date, end_date)
    else:
        span = RANGE_DAYS[range_token]
        current = DateWindow(today - timedelta(days=span - 1), today)

    if compare_token == "custom_compare":
        previous = _explicit_window(compare_start_date, compare_end_date, prefix="compare_")
        offset_days = (current.start - previous.start).days
    else:
        offset_days = COMPARE_OFFSETS.get(compare_token, current.days)
        try:
            previous = current.shift(offset_days)
        except OverflowError:
            if compare_token != "none":
                raise InvalidRangeError("Comparison window falls before the earliest supported date")
            previous = None

    return ResolvedPeriod(
        range_token=range_token,
        compare_token=compare_token,
        current=current,
        previous=previous,
        offset_days=offset_days,
        comparison_enabled=compare_token != "none",
    )

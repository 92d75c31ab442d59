"""Comparative insights engine behind the sales, planting and harvest pages."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytz

from .aggregation import MetricDefinition, aggregate_records, field_extractor, local_day
from .comparison import compare_metrics
from .periods import (
    COMPARE_TOKENS,
    RANGE_TOKENS,
    DateWindow,
    InvalidRangeError,
    ResolvedPeriod,
    parse_calendar_date,
    resolve_period,
)
from .series import assemble_series
from .snapshot import GreenhouseSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------


def _serialise_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_serialise_value(entry) for entry in value]
    return value


def _safe_timezone(tz_name: str) -> Optional[tzinfo]:
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone '%s'; falling back to UTC", tz_name)
        return None


def _days_between(
    start_field: str, end_field: str
) -> Callable[[Dict[str, Any], Optional[tzinfo]], Optional[float]]:
    """Whole days from ``start_field`` to ``end_field`` or ``None`` if either is missing."""

    def _extract(record: Dict[str, Any], tz: Optional[tzinfo] = None) -> Optional[float]:
        start = local_day(record.get(start_field), tz)
        end = local_day(record.get(end_field), tz)
        if start is None or end is None:
            return None
        return float((end - start).days)

    return _extract


# ---------------------------------------------------------------------------
# Parameter and definition primitives
# ---------------------------------------------------------------------------


@dataclass
class InsightParameter:
    name: str
    label: str
    param_type: str
    description: str = ""
    default: Any = None
    options: Optional[List[Dict[str, Any]]] = None

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "type": self.param_type,
            "description": self.description,
            "options": self.options,
            "default": _serialise_value(self.default),
        }

    def normalise(self, value: Any) -> Any:
        candidate = value
        if candidate in (None, ""):
            candidate = self.default
        if candidate in (None, ""):
            return None
        if self.param_type == "date":
            return parse_calendar_date(candidate, self.name)
        if self.param_type == "enum":
            value_text = str(candidate).strip()
            allowed = {option["value"] for option in self.options or []}
            if allowed and value_text not in allowed:
                raise InvalidRangeError(
                    f"Invalid value '{candidate}' for {self.label}; expected one of {sorted(allowed)}"
                )
            return value_text
        return candidate


RANGE_LABELS = {
    "last_7_days": "Last 7 days",
    "last_30_days": "Last 30 days",
    "last_90_days": "Last 90 days",
    "all_time": "All time",
    "custom": "Custom range",
}
COMPARE_LABELS = {
    "none": "None",
    "previous_period": "Previous period",
    "previous_week": "Previous week",
    "previous_month": "Previous month",
    "previous_year": "Previous year",
    "custom_compare": "Custom range",
}


def _period_parameters() -> List[InsightParameter]:
    return [
        InsightParameter(
            name="range",
            label="Date range",
            param_type="enum",
            default="last_30_days",
            options=[{"value": token, "label": RANGE_LABELS[token]} for token in RANGE_TOKENS],
        ),
        InsightParameter(
            name="compare",
            label="Compare",
            param_type="enum",
            default="none",
            options=[{"value": token, "label": COMPARE_LABELS[token]} for token in COMPARE_TOKENS],
        ),
        InsightParameter(
            name="start_date",
            label="Start Date",
            param_type="date",
            description="Required when range is custom.",
        ),
        InsightParameter(
            name="end_date",
            label="End Date",
            param_type="date",
            description="Required when range is custom.",
        ),
        InsightParameter(
            name="compare_start_date",
            label="Compare Start Date",
            param_type="date",
            description="Required when compare is custom_compare.",
        ),
        InsightParameter(
            name="compare_end_date",
            label="Compare End Date",
            param_type="date",
            description="Required when compare is custom_compare.",
        ),
    ]


@dataclass
class InsightDefinition:
    id: str
    name: str
    description: str
    loader: Callable[[GreenhouseSnapshot], List[Dict[str, Any]]]
    timestamp_field: str
    metrics: List[MetricDefinition]
    parameters: List[InsightParameter] = field(default_factory=_period_parameters)
    tags: List[str] = field(default_factory=list)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": [parameter.describe() for parameter in self.parameters],
            "metrics": [metric.describe() for metric in self.metrics],
            "tags": self.tags,
            "defaultParams": {
                parameter.name: _serialise_value(parameter.default) for parameter in self.parameters
            },
        }

    def normalise_params(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            parameter.name: parameter.normalise(payload.get(parameter.name))
            for parameter in self.parameters
        }

    def timestamp(self, record: Dict[str, Any]) -> Any:
        return record.get(self.timestamp_field)


# ---------------------------------------------------------------------------
# Insights engine
# ---------------------------------------------------------------------------


class InsightsEngine:
    def __init__(self) -> None:
        self._definitions: Dict[str, InsightDefinition] = {}
        self._register_default_insights()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_insight_definitions(self) -> List[Dict[str, Any]]:
        return [definition.describe() for definition in self._definitions.values()]

    def get_definition(self, insight_id: str) -> InsightDefinition:
        if insight_id not in self._definitions:
            raise KeyError(f"Unknown insight '{insight_id}'")
        return self._definitions[insight_id]

    def run_insight(
        self,
        conn: sqlite3.Connection,
        insight_id: str,
        params: Optional[Dict[str, Any]],
        *,
        timezone_name: str = "UTC",
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        definition = self.get_definition(insight_id)
        normalised = definition.normalise_params(params or {})
        tz = _safe_timezone(timezone_name)
        now = datetime.now(tz or timezone.utc)
        period = resolve_period(
            normalised["range"],
            normalised["compare"],
            start_date=normalised["start_date"],
            end_date=normalised["end_date"],
            compare_start_date=normalised["compare_start_date"],
            compare_end_date=normalised["compare_end_date"],
            today=today or now.date(),
        )
        snapshot = GreenhouseSnapshot.build(conn)
        records = definition.loader(snapshot)
        result = self.compute(definition, records, period, tz=tz)
        result["generatedAt"] = now.isoformat()
        logger.info(
            "Computed %s insights for %s (%d records in window)",
            definition.id,
            result["period"]["current"],
            result["meta"]["recordCount"],
        )
        return result

    def compute(
        self,
        definition: InsightDefinition,
        records: Sequence[Dict[str, Any]],
        period: ResolvedPeriod,
        *,
        tz: Optional[tzinfo] = None,
    ) -> Dict[str, Any]:
        """Aggregate, compare and chart ``records`` for a resolved period.

        Pure with respect to its inputs: the same records and period always
        give the same payload.
        """
        current_window = period.current
        if period.range_token == "all_time":
            current_window = self._bounded_all_time(definition, records, period.current, tz)

        current = aggregate_records(
            records, current_window, definition.metrics, timestamp=definition.timestamp, tz=tz
        )
        previous_totals: Optional[Dict[str, float]] = None
        previous_daily: Dict[date, Dict[str, float]] = {}
        if period.previous is not None:
            previous = aggregate_records(
                records, period.previous, definition.metrics, timestamp=definition.timestamp, tz=tz
            )
            previous_totals = previous.totals
            previous_daily = previous.daily

        metrics = compare_metrics(current.totals, previous_totals, definition.metrics)
        series = assemble_series(
            current_window,
            period.previous,
            period.offset_days,
            current.daily,
            previous_daily,
            definition.metrics,
        )

        period_payload = period.to_dict()
        period_payload["current"] = current_window.to_dict()
        return {
            "id": definition.id,
            "name": definition.name,
            "description": definition.description,
            "period": period_payload,
            "comparisonEnabled": period.comparison_enabled,
            "metrics": {key: result.to_dict() for key, result in metrics.items()},
            "chartData": [point.to_dict() for point in series],
            "meta": {
                "recordCount": current.record_count,
                "metricDefinitions": [metric.describe() for metric in definition.metrics],
            },
        }

    # ------------------------------------------------------------------
    # Registration helpers
    # ------------------------------------------------------------------
    def register(self, definition: InsightDefinition) -> None:
        self._definitions[definition.id] = definition

    def _register_default_insights(self) -> None:
        self.register(
            InsightDefinition(
                id="sales",
                name="Sales insights",
                description="Revenue, order volume and crops sold from completed orders.",
                loader=lambda snapshot: snapshot.sales_records(),
                timestamp_field="completed_at",
                metrics=[
                    MetricDefinition(
                        key="total_revenue",
                        chart_key="revenue",
                        label="Total revenue",
                        kind="sum",
                        extractor=field_extractor("total_amount"),
                        format_hint="currency",
                    ),
                    MetricDefinition(
                        key="total_orders",
                        chart_key="orders",
                        label="Total orders",
                        kind="count",
                    ),
                    MetricDefinition(
                        key="total_crops_sold",
                        chart_key="crops",
                        label="Total crops sold",
                        kind="sum",
                        extractor=field_extractor("item_count"),
                    ),
                    MetricDefinition(
                        key="average_order_value",
                        chart_key="avgOrder",
                        label="Average order value",
                        kind="ratio",
                        numerator="total_revenue",
                        denominator="total_orders",
                        format_hint="currency",
                    ),
                ],
                tags=["sales", "orders", "revenue"],
            )
        )

        self.register(
            InsightDefinition(
                id="planting",
                name="Planting insights",
                description="Planting volume, variety and pacing by seeding date.",
                loader=lambda snapshot: snapshot.crop_records(),
                timestamp_field="seeding_date",
                metrics=[
                    MetricDefinition(
                        key="total_plantings",
                        chart_key="plantings",
                        label="Total Plantings",
                        kind="count",
                    ),
                    MetricDefinition(
                        key="crop_varieties",
                        chart_key="varieties",
                        label="Crop Varieties",
                        kind="distinct_count",
                        extractor=field_extractor("name"),
                    ),
                    MetricDefinition(
                        key="avg_maturity_days",
                        chart_key="avgMaturityDays",
                        label="Avg. Days to Maturity",
                        kind="average",
                        extractor=_days_between("seeding_date", "expected_harvest_date"),
                        higher_is_better=False,
                        format_hint="days",
                    ),
                    MetricDefinition(
                        key="planting_interval",
                        chart_key="plantingInterval",
                        label="Planting Interval",
                        kind="rate",
                        numerator="total_plantings",
                        per_days=7,
                        format_hint="per_week",
                    ),
                ],
                tags=["crops", "planting"],
            )
        )

        self.register(
            InsightDefinition(
                id="harvest",
                name="Harvest insights",
                description="Harvest volume, variety and time to harvest by harvest date.",
                loader=lambda snapshot: snapshot.crop_records(),
                timestamp_field="harvest_date",
                metrics=[
                    MetricDefinition(
                        key="total_harvests",
                        chart_key="harvests",
                        label="Total harvests",
                        kind="count",
                    ),
                    MetricDefinition(
                        key="unique_crops_harvested",
                        chart_key="uniqueCrops",
                        label="Unique crops harvested",
                        kind="distinct_count",
                        extractor=field_extractor("name"),
                    ),
                    MetricDefinition(
                        key="avg_days_to_harvest",
                        chart_key="avgDaysToHarvest",
                        label="Average time to harvest",
                        kind="average",
                        extractor=_days_between("seeding_date", "harvest_date"),
                        higher_is_better=False,
                        format_hint="days",
                    ),
                    MetricDefinition(
                        key="harvest_frequency",
                        chart_key="harvestFrequency",
                        label="Harvest frequency",
                        kind="rate",
                        numerator="total_harvests",
                        per_days=7,
                        format_hint="per_week",
                    ),
                ],
                tags=["crops", "harvest"],
            )
        )

    # ------------------------------------------------------------------
    # Window helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _bounded_all_time(
        definition: InsightDefinition,
        records: Sequence[Dict[str, Any]],
        window: DateWindow,
        tz: Optional[tzinfo],
    ) -> DateWindow:
        days = [local_day(definition.timestamp(record), tz) for record in records]
        dated = [day for day in days if day is not None and window.contains(day)]
        start = min(dated) if dated else window.end
        return DateWindow(start, window.end)


_engine_instance: Optional[InsightsEngine] = None


def get_insights_engine() -> InsightsEngine:
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = InsightsEngine()
    return _engine_instance

import pathlib
import sys
from datetime import date

import pytest
import pytz

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.aggregation import (
    MetricDefinition,
    aggregate_records,
    field_extractor,
    local_day,
)
from services.periods import DateWindow

WINDOW = DateWindow(date(2024, 6, 1), date(2024, 6, 7))

METRICS = [
    MetricDefinition(key='orders', label='Orders', kind='count'),
    MetricDefinition(key='revenue', label='Revenue', kind='sum', extractor=field_extractor('amount')),
    MetricDefinition(key='varieties', label='Varieties', kind='distinct_count', extractor=field_extractor('name')),
    MetricDefinition(key='avg_days', label='Avg days', kind='average', extractor=field_extractor('days')),
    MetricDefinition(
        key='avg_order', label='Avg order', kind='ratio', numerator='revenue', denominator='orders'
    ),
    MetricDefinition(key='weekly_orders', label='Weekly orders', kind='rate', numerator='orders', per_days=7),
]


def _timestamp(record):
    return record.get('at')


def _aggregate(records, window=WINDOW, tz=None):
    return aggregate_records(records, window, METRICS, timestamp=_timestamp, tz=tz)


def test_records_without_timestamp_are_excluded():
    records = [
        {'at': '2024-06-02', 'amount': 10, 'name': 'Kale'},
        {'at': None, 'amount': 99, 'name': 'Basil'},
        {'at': '', 'amount': 99, 'name': 'Basil'},
        {'at': 'not a date', 'amount': 99, 'name': 'Basil'},
    ]
    result = _aggregate(records)
    assert result.record_count == 1
    assert result.totals['revenue'] == 10
    assert result.totals['varieties'] == 1
    assert list(result.buckets) == [date(2024, 6, 2)]
    assert all(
        record['name'] == 'Kale' for bucket in result.buckets.values() for record in bucket.records
    )


def test_window_bounds_are_inclusive():
    records = [
        {'at': '2024-05-31T23:59:59', 'amount': 1},
        {'at': '2024-06-01T00:00:00', 'amount': 2},
        {'at': '2024-06-07T23:59:59', 'amount': 3},
        {'at': '2024-06-08T00:00:00', 'amount': 4},
    ]
    result = _aggregate(records)
    assert result.totals['revenue'] == 5
    assert sorted(result.buckets) == [date(2024, 6, 1), date(2024, 6, 7)]


def test_sum_treats_bad_values_as_zero_but_average_skips_them():
    records = [
        {'at': '2024-06-03', 'amount': '12.5', 'days': 10},
        {'at': '2024-06-03', 'amount': 'n/a', 'days': -4},
        {'at': '2024-06-03', 'amount': None, 'days': None},
        {'at': '2024-06-03', 'amount': 7.5, 'days': '20'},
    ]
    result = _aggregate(records)
    values = result.daily[date(2024, 6, 3)]
    assert values['orders'] == 4
    assert values['revenue'] == pytest.approx(20.0)
    assert values['avg_days'] == pytest.approx(15.0)
    assert values['avg_order'] == pytest.approx(5.0)


def test_distinct_count_ignores_blank_keys():
    records = [
        {'at': '2024-06-04', 'name': 'Kale'},
        {'at': '2024-06-04', 'name': 'Kale'},
        {'at': '2024-06-04', 'name': 'Lettuce'},
        {'at': '2024-06-04', 'name': ''},
        {'at': '2024-06-04'},
    ]
    result = _aggregate(records)
    assert result.daily[date(2024, 6, 4)]['varieties'] == 2


def test_rate_uses_bucket_span():
    records = [{'at': f'2024-06-0{day}'} for day in (1, 2, 2, 5)]
    result = _aggregate(records)
    assert result.totals['weekly_orders'] == pytest.approx(4.0)
    assert result.daily[date(2024, 6, 2)]['weekly_orders'] == pytest.approx(14.0)


def test_empty_window_produces_zero_totals():
    result = _aggregate([{'at': '2023-01-01', 'amount': 5}])
    assert result.buckets == {}
    assert result.record_count == 0
    assert all(value == 0 for value in result.totals.values())
    assert set(result.totals) == {metric.key for metric in METRICS}


def test_daily_sums_match_window_total():
    records = [
        {'at': f'2024-06-0{day}T0{day}:15:00', 'amount': amount}
        for day, amount in ((1, 3.1), (2, 4.2), (2, 0.7), (6, 9.99), (7, 1.01))
    ]
    result = _aggregate(records)
    daily_total = sum(values['revenue'] for values in result.daily.values())
    assert daily_total == pytest.approx(result.totals['revenue'])
    assert list(result.daily) == sorted(result.daily)


def test_aware_timestamps_use_local_calendar_day():
    tz = pytz.timezone('Pacific/Auckland')
    records = [{'at': '2024-06-01T20:00:00+00:00', 'amount': 1}]
    result = _aggregate(records, tz=tz)
    assert list(result.buckets) == [date(2024, 6, 2)]
    assert local_day('2024-06-01T20:00:00', tz) == date(2024, 6, 1)


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        MetricDefinition(key='bad', label='Bad', kind='median')
    with pytest.raises(ValueError):
        MetricDefinition(key='ratio', label='Ratio', kind='ratio', numerator='a')

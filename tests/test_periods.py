import pathlib
import sys
import unittest
from datetime import date, timedelta

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.periods import DateWindow, InvalidRangeError, resolve_period

TODAY = date(2024, 6, 15)


class NamedRangeTests(unittest.TestCase):
    def test_last_7_days_includes_today(self):
        period = resolve_period('last_7_days', 'none', today=TODAY)
        self.assertEqual(period.current.start, date(2024, 6, 9))
        self.assertEqual(period.current.end, TODAY)
        self.assertEqual(period.current.days, 7)

    def test_none_still_builds_implicit_previous_window(self):
        period = resolve_period('last_30_days', 'none', today=TODAY)
        self.assertFalse(period.comparison_enabled)
        self.assertEqual(period.offset_days, 30)
        self.assertEqual(period.previous.end, period.current.start - timedelta(days=1))
        self.assertEqual(period.previous.days, 30)

    def test_previous_period_uses_window_length(self):
        period = resolve_period('last_90_days', 'previous_period', today=TODAY)
        self.assertTrue(period.comparison_enabled)
        self.assertEqual(period.offset_days, 90)

    def test_previous_month_offset_is_thirty_days_for_any_span(self):
        for token in ('last_7_days', 'last_30_days', 'last_90_days'):
            period = resolve_period(token, 'previous_month', today=TODAY)
            self.assertEqual(period.offset_days, 30)
            self.assertEqual(period.previous.start, period.current.start - timedelta(days=30))
            self.assertEqual(period.previous.end, period.current.end - timedelta(days=30))

    def test_previous_year_on_thirty_day_range(self):
        period = resolve_period('last_30_days', 'previous_year', today=TODAY)
        self.assertEqual(period.offset_days, 365)
        self.assertEqual(period.previous.start, period.current.start - timedelta(days=365))
        self.assertEqual(period.previous.days, period.current.days)

    def test_previous_week(self):
        period = resolve_period('last_7_days', 'previous_week', today=TODAY)
        self.assertEqual(period.previous, DateWindow(date(2024, 6, 2), date(2024, 6, 8)))

    def test_all_time_disables_comparison(self):
        period = resolve_period('all_time', 'previous_year', today=TODAY)
        self.assertEqual(period.compare_token, 'none')
        self.assertFalse(period.comparison_enabled)
        self.assertIsNone(period.previous)
        self.assertEqual(period.current.start, date.min)
        self.assertEqual(period.current.end, TODAY)

    def test_blank_tokens_use_defaults(self):
        period = resolve_period('', None, today=TODAY)
        self.assertEqual(period.range_token, 'last_30_days')
        self.assertEqual(period.compare_token, 'none')


class ExplicitRangeTests(unittest.TestCase):
    def test_custom_range(self):
        period = resolve_period(
            'custom', 'previous_period', start_date='2024-05-01', end_date='2024-05-10', today=TODAY
        )
        self.assertEqual(period.current, DateWindow(date(2024, 5, 1), date(2024, 5, 10)))
        self.assertEqual(period.offset_days, 10)
        self.assertEqual(period.previous, DateWindow(date(2024, 4, 21), date(2024, 4, 30)))

    def test_custom_requires_both_bounds(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period('custom', 'none', start_date='2024-05-01', today=TODAY)
        with self.assertRaises(InvalidRangeError):
            resolve_period('custom', 'none', end_date='2024-05-01', today=TODAY)

    def test_custom_rejects_inverted_bounds(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period(
                'custom', 'none', start_date='2024-05-10', end_date='2024-05-01', today=TODAY
            )

    def test_custom_rejects_unparseable_dates(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period('custom', 'none', start_date='yesterday-ish', end_date='2024-05-01')

    def test_out_of_range_timestamps_are_rejected(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period(
                'custom', 'none', start_date='2024-01-01', end_date='9999-12-31T24:00', today=TODAY
            )

    def test_range_at_earliest_date_without_comparison(self):
        period = resolve_period(
            'custom', 'none', start_date='0001-01-01', end_date='0001-01-03', today=TODAY
        )
        self.assertEqual(period.current, DateWindow(date(1, 1, 1), date(1, 1, 3)))
        self.assertIsNone(period.previous)
        self.assertFalse(period.comparison_enabled)

    def test_requested_comparison_before_earliest_date_is_rejected(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period(
                'custom',
                'previous_period',
                start_date='0001-01-01',
                end_date='0001-01-03',
                today=TODAY,
            )

    def test_custom_compare_uses_explicit_bounds(self):
        period = resolve_period(
            'custom',
            'custom_compare',
            start_date='2024-05-01',
            end_date='2024-05-10',
            compare_start_date='2024-03-01',
            compare_end_date='2024-03-10',
            today=TODAY,
        )
        self.assertEqual(period.previous, DateWindow(date(2024, 3, 1), date(2024, 3, 10)))
        self.assertEqual(period.offset_days, (date(2024, 5, 1) - date(2024, 3, 1)).days)
        self.assertTrue(period.comparison_enabled)

    def test_custom_compare_requires_bounds(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period('last_7_days', 'custom_compare', compare_start_date='2024-03-01', today=TODAY)

    def test_custom_compare_rejects_inverted_bounds(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period(
                'last_7_days',
                'custom_compare',
                compare_start_date='2024-03-10',
                compare_end_date='2024-03-01',
                today=TODAY,
            )

    def test_unknown_tokens(self):
        with self.assertRaises(InvalidRangeError):
            resolve_period('last_week', 'none', today=TODAY)
        with self.assertRaises(InvalidRangeError):
            resolve_period('last_7_days', 'previous_decade', today=TODAY)

    def test_invalid_range_error_is_value_error(self):
        self.assertTrue(issubclass(InvalidRangeError, ValueError))


class DateWindowTests(unittest.TestCase):
    def test_iter_days_is_inclusive(self):
        window = DateWindow(date(2024, 2, 27), date(2024, 3, 1))
        self.assertEqual(
            list(window.iter_days()),
            [date(2024, 2, 27), date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)],
        )
        self.assertEqual(window.days, 4)

    def test_inverted_window_is_rejected(self):
        with self.assertRaises(InvalidRangeError):
            DateWindow(date(2024, 3, 2), date(2024, 3, 1))


if __name__ == '__main__':
    unittest.main()

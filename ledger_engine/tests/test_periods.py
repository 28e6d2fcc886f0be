import unittest
from datetime import date

from ledger_engine.periods import (
    InvalidDateRange,
    Period,
    PeriodDivision,
    PeriodType,
    bucket_index,
    check_division,
    resolve_period_range,
    split_period,
)


class SplitPeriodTests(unittest.TestCase):
    def test_monthly_buckets_are_clipped_to_range(self) -> None:
        buckets = split_period(date(2024, 1, 15), date(2024, 3, 10), PeriodDivision.MONTH)

        self.assertEqual(
            buckets,
            [
                Period(date(2024, 1, 15), date(2024, 1, 31)),
                Period(date(2024, 2, 1), date(2024, 2, 29)),
                Period(date(2024, 3, 1), date(2024, 3, 10)),
            ],
        )

    def test_weeks_start_on_monday(self) -> None:
        buckets = split_period(date(2024, 1, 3), date(2024, 1, 14), PeriodDivision.WEEK)

        self.assertEqual(
            buckets,
            [
                Period(date(2024, 1, 3), date(2024, 1, 7)),
                Period(date(2024, 1, 8), date(2024, 1, 14)),
            ],
        )

    def test_quarters_and_half_years(self) -> None:
        quarters = split_period(date(2024, 2, 1), date(2024, 12, 31), PeriodDivision.QUARTER)
        halves = split_period(date(2024, 2, 1), date(2025, 1, 31), PeriodDivision.HALF_YEAR)

        self.assertEqual([bucket.start for bucket in quarters], [date(2024, 2, 1), date(2024, 4, 1), date(2024, 7, 1), date(2024, 10, 1)])
        self.assertEqual(
            halves,
            [
                Period(date(2024, 2, 1), date(2024, 6, 30)),
                Period(date(2024, 7, 1), date(2024, 12, 31)),
                Period(date(2025, 1, 1), date(2025, 1, 31)),
            ],
        )

    def test_no_division_yields_single_bucket(self) -> None:
        self.assertEqual(
            split_period(date(2024, 1, 1), date(2024, 12, 31), PeriodDivision.NONE),
            [Period(date(2024, 1, 1), date(2024, 12, 31))],
        )

    def test_daily_buckets_cover_every_day(self) -> None:
        buckets = split_period(date(2024, 2, 27), date(2024, 3, 1), PeriodDivision.DAY)

        self.assertEqual(len(buckets), 4)
        self.assertTrue(all(bucket.start == bucket.end for bucket in buckets))

    def test_end_before_start_is_rejected(self) -> None:
        with self.assertRaises(InvalidDateRange):
            split_period(date(2024, 2, 1), date(2024, 1, 1), PeriodDivision.MONTH)

    def test_bucket_index_locates_day(self) -> None:
        buckets = split_period(date(2024, 1, 1), date(2024, 3, 31), PeriodDivision.MONTH)

        self.assertEqual(bucket_index(buckets, date(2024, 2, 29)), 1)
        self.assertEqual(bucket_index(buckets, date(2024, 3, 1)), 2)
        self.assertIsNone(bucket_index(buckets, date(2024, 4, 1)))


class PeriodRangeTests(unittest.TestCase):
    def test_calendar_periods_contain_today(self) -> None:
        today = date(2024, 5, 15)

        self.assertEqual(resolve_period_range(PeriodType.DAY, today), Period(today, today))
        self.assertEqual(resolve_period_range(PeriodType.WEEK, today), Period(date(2024, 5, 13), date(2024, 5, 19)))
        self.assertEqual(resolve_period_range(PeriodType.MONTH, today), Period(date(2024, 5, 1), date(2024, 5, 31)))
        self.assertEqual(resolve_period_range(PeriodType.QUARTER, today), Period(date(2024, 4, 1), date(2024, 6, 30)))
        self.assertEqual(resolve_period_range(PeriodType.HALF_YEAR, today), Period(date(2024, 1, 1), date(2024, 6, 30)))
        self.assertEqual(resolve_period_range(PeriodType.YEAR, today), Period(date(2024, 1, 1), date(2024, 12, 31)))

    def test_selected_period_requires_valid_bounds(self) -> None:
        self.assertEqual(
            resolve_period_range(PeriodType.SELECTED, start=date(2024, 1, 1), end=date(2024, 1, 31)),
            Period(date(2024, 1, 1), date(2024, 1, 31)),
        )
        with self.assertRaises(InvalidDateRange):
            resolve_period_range(PeriodType.SELECTED, start=date(2024, 1, 1))
        with self.assertRaises(InvalidDateRange):
            resolve_period_range(PeriodType.SELECTED, start=date(2024, 2, 1), end=date(2024, 1, 1))

    def test_division_must_not_be_coarser_than_period(self) -> None:
        check_division(PeriodType.YEAR, PeriodDivision.MONTH)
        check_division(PeriodType.MONTH, PeriodDivision.NONE)
        check_division(PeriodType.SELECTED, PeriodDivision.YEAR)
        with self.assertRaises(InvalidDateRange):
            check_division(PeriodType.MONTH, PeriodDivision.QUARTER)


if __name__ == "__main__":
    unittest.main()

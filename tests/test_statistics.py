"""Tests for completion ratios, weekly/monthly stats and the streak policy."""

import unittest
from datetime import date, timedelta

from salah.prayer.completion import CompletionStore
from salah.prayer.models import PRAYER_NAMES, CompletionRecord, date_key
from salah.prayer.statistics import (
    StatisticsEngine,
    compute_stats,
    compute_streak,
    daily_ratio,
    month_bounds,
    week_bounds,
)
from tests.helpers import DAY, FixedClock, TimetableLookup, at, make_store


def record(day: date, count: int = 5) -> CompletionRecord:
    rec = CompletionRecord.empty(date_key(day))
    for name in PRAYER_NAMES[:count]:
        rec.set(name, True)
    return rec


def index_of(*records: CompletionRecord):
    return {rec.date: rec for rec in records}


def days_ago(n: int) -> date:
    return DAY - timedelta(days=n)


class TestRatios(unittest.TestCase):
    def test_daily_ratio(self):
        index = index_of(record(DAY, 3))
        self.assertAlmostEqual(daily_ratio(index, DAY), 0.6)
        self.assertEqual(daily_ratio(index, days_ago(1)), 0.0)

    def test_week_and_month_bounds(self):
        # 2024-06-01 is a Saturday
        self.assertEqual(week_bounds(DAY), (date(2024, 5, 27), date(2024, 6, 2)))
        self.assertEqual(month_bounds(DAY), (date(2024, 6, 1), date(2024, 6, 30)))
        self.assertEqual(month_bounds(date(2024, 2, 10)), (date(2024, 2, 1), date(2024, 2, 29)))

    def test_compute_stats_counts_only_days_up_to_today(self):
        index = index_of(record(DAY, 2), record(days_ago(1)), record(days_ago(5), 3), record(days_ago(6)))

        stats = compute_stats(index, DAY)

        self.assertEqual(stats.today.completed, 2)
        self.assertEqual(stats.today.total, 5)
        self.assertAlmostEqual(stats.today.percentage, 40.0)
        # Monday 27th .. Saturday 1st: six days; the 26th belongs to the previous week
        self.assertEqual(stats.week.total, 30)
        self.assertEqual(stats.week.completed, 2 + 5 + 3)
        # June so far is just the 1st
        self.assertEqual(stats.month.total, 5)
        self.assertEqual(stats.month.completed, 2)

    def test_empty_index(self):
        stats = compute_stats({}, DAY)
        self.assertEqual(stats.week.completed, 0)
        self.assertEqual(stats.week.percentage, 0.0)


class TestStreak(unittest.TestCase):
    def test_unfinished_today_does_not_break_streak(self):
        index = index_of(record(DAY, 2), record(days_ago(1)), record(days_ago(2)))
        streak = compute_streak(index, DAY)
        self.assertEqual(streak.current_streak, 2)
        self.assertEqual(streak.last_completed_date, date_key(days_ago(1)))

    def test_complete_today_extends_streak(self):
        index = index_of(record(DAY), record(days_ago(1)), record(days_ago(2)))
        streak = compute_streak(index, DAY)
        self.assertEqual(streak.current_streak, 3)
        self.assertEqual(streak.last_completed_date, date_key(DAY))

    def test_gap_yesterday_resets_current(self):
        index = index_of(record(days_ago(2)), record(days_ago(3)), record(days_ago(4)), record(days_ago(1), 4))
        streak = compute_streak(index, DAY)
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.longest_streak, 3)
        self.assertEqual(streak.last_completed_date, date_key(days_ago(2)))

    def test_longest_is_at_least_current(self):
        index = index_of(record(days_ago(1)), record(days_ago(10)), record(days_ago(11)))
        streak = compute_streak(index, DAY)
        self.assertEqual(streak.current_streak, 1)
        self.assertEqual(streak.longest_streak, 2)

    def test_window_is_one_year(self):
        index = index_of(record(days_ago(400)))
        streak = compute_streak(index, DAY)
        self.assertEqual(streak, (0, 0, None))


class TestStatisticsEngine(unittest.TestCase):
    def test_reads_fresh_snapshot(self):
        clock = FixedClock(at(22, 0))
        completion = CompletionStore(make_store(), TimetableLookup(), now_fn=clock)
        engine = StatisticsEngine(completion, now_fn=clock)

        self.assertEqual(engine.get_stats().today.completed, 0)
        for name in PRAYER_NAMES:
            completion.mark_prayer(DAY, name, True)

        self.assertEqual(engine.get_stats().today.completed, 5)
        self.assertEqual(engine.get_streak().current_streak, 1)
        self.assertEqual(engine.get_daily_ratio(DAY), 1.0)


if __name__ == "__main__":
    unittest.main()

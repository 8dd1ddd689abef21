"""Tests for current/next prayer classification and countdown formatting."""

import unittest
from datetime import timedelta

from salah.prayer.clock import (
    format_countdown,
    get_current_prayer,
    get_next_prayer,
    get_next_prayer_time,
    seconds_until,
)
from tests.helpers import DAY, at, make_instants


class TestCurrentPrayer(unittest.TestCase):
    def setUp(self):
        self.instants = make_instants()

    def test_afternoon_is_dhuhr(self):
        self.assertEqual(get_current_prayer(self.instants, at(14, 0)), "dhuhr")

    def test_late_night_is_isha(self):
        self.assertEqual(get_current_prayer(self.instants, at(22, 0)), "isha")

    def test_before_fajr_is_none(self):
        self.assertIsNone(get_current_prayer(self.instants, at(4, 0)))

    def test_boundary_belongs_to_new_prayer(self):
        self.assertEqual(get_current_prayer(self.instants, at(16, 47)), "asr")
        self.assertEqual(get_current_prayer(self.instants, at(16, 46)), "dhuhr")


class TestNextPrayer(unittest.TestCase):
    def setUp(self):
        self.instants = make_instants()

    def test_next_is_strictly_after_now(self):
        self.assertEqual(get_next_prayer(self.instants, at(4, 0)), "fajr")
        self.assertEqual(get_next_prayer(self.instants, at(13, 3)), "asr")
        self.assertEqual(get_next_prayer(self.instants, at(20, 0)), "isha")

    def test_after_isha_wraps_to_fajr(self):
        self.assertEqual(get_next_prayer(self.instants, at(23, 0)), "fajr")

    def test_next_prayer_time_after_isha_is_tomorrow(self):
        name, when = get_next_prayer_time(self.instants, at(23, 0))
        self.assertEqual(name, "fajr")
        self.assertEqual(when, at(5, 30, DAY + timedelta(days=1)))

    def test_next_prayer_time_today(self):
        self.assertEqual(get_next_prayer_time(self.instants, at(14, 0)), ("asr", at(16, 47)))


class TestCountdown(unittest.TestCase):
    def test_seconds_until(self):
        self.assertEqual(seconds_until(at(16, 47), at(14, 0)), 10020)
        self.assertEqual(seconds_until(at(14, 0), at(14, 1)), -60)

    def test_format_countdown(self):
        self.assertEqual(format_countdown(10020), "02:47:00")
        self.assertEqual(format_countdown(59), "00:00:59")
        self.assertEqual(format_countdown(-5), "00:00:00")


if __name__ == "__main__":
    unittest.main()

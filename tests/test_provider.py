"""Tests for prayer time backends and the provider's cache/network/fallback chain."""

import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytz
import requests

from salah.core.cache_helper import CacheHelper
from salah.core.errors import UnavailableError
from salah.prayer.models import Location
from salah.prayer.prayer_base import (
    AladhanBackend,
    PrayerBackend,
    StaticScheduleBackend,
    create_backend,
    parse_time_string,
)
from salah.prayer.provider import PrayerTimeProvider
from tests.helpers import DAY, ISTANBUL, TIMINGS, FixedClock, at, make_store


def make_backend(timings=None, error=None):
    backend = MagicMock(spec=PrayerBackend)
    if error is not None:
        backend.fetch_timings.side_effect = error
    else:
        backend.fetch_timings.return_value = dict(timings or TIMINGS)
    return backend


class TestParseTimeString(unittest.TestCase):
    def test_plain(self):
        self.assertEqual(parse_time_string("05:30").strftime("%H:%M"), "05:30")

    def test_zone_suffix_is_ignored(self):
        self.assertEqual(parse_time_string("19:45 (EET)").strftime("%H:%M"), "19:45")

    def test_invalid(self):
        for value in ("", "noon", "25:00", "12:75"):
            with self.assertRaises(ValueError):
                parse_time_string(value)


class TestAladhanBackend(unittest.TestCase):
    @patch("salah.prayer.prayer_base.requests.get")
    def test_fetch_timings(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {
            "code": 200,
            "status": "OK",
            "data": {"timings": {
                "Fajr": "05:30 (EET)",
                "Sunrise": "06:50 (EET)",
                "Dhuhr": "13:03 (EET)",
                "Asr": "16:47 (EET)",
                "Maghrib": "19:45 (EET)",
                "Isha": "21:15 (EET)",
                "Midnight": "00:30 (EET)",
            }},
        }
        mock_resp.raise_for_status = MagicMock()
        mock_get.return_value = mock_resp

        backend = AladhanBackend({"method": 13, "timeout": 5})
        timings = backend.fetch_timings(*ISTANBUL, DAY)

        self.assertEqual(timings["fajr"], "05:30")
        self.assertEqual(timings["sunrise"], "06:50")
        self.assertEqual(timings["isha"], "21:15")
        self.assertNotIn("midnight", timings)
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["params"]["method"], 13)
        self.assertEqual(kwargs["params"]["latitude"], ISTANBUL[0])
        self.assertEqual(kwargs["timeout"], 5)

    @patch("salah.prayer.prayer_base.requests.get")
    def test_api_error_code(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {"code": 400, "status": "BAD_REQUEST", "data": "Invalid"}
        mock_get.return_value = mock_resp

        with self.assertRaises(ValueError):
            AladhanBackend({}).fetch_timings(*ISTANBUL, DAY)

    def test_factory(self):
        self.assertIsInstance(create_backend("aladhan", {}), AladhanBackend)
        self.assertIsInstance(create_backend("Static", {}), StaticScheduleBackend)
        self.assertIsNone(create_backend("unknown", {}))


class TestPrayerTimeProvider(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.clock = FixedClock(at(1, 0))
        self.cache = CacheHelper(self.store, namespace=PrayerTimeProvider.CACHE_NAMESPACE, now_fn=self.clock)
        self.location = Location(*ISTANBUL)

    def make_provider(self, backend, **kwargs):
        return PrayerTimeProvider(backend, self.cache, **kwargs)

    def test_network_then_cache(self):
        backend = make_backend()
        provider = self.make_provider(backend)

        first = provider.get_prayer_times(self.location, DAY)
        second = provider.get_prayer_times(self.location, DAY)

        self.assertEqual(first.source, "network")
        self.assertEqual(second.source, "cache")
        self.assertEqual(backend.fetch_timings.call_count, 1)
        self.assertEqual(first.dhuhr, at(13, 3))
        self.assertEqual(second.maghrib, at(19, 45))
        self.assertIsNone(second.sunrise)

    def test_cache_hit_within_tolerance(self):
        backend = make_backend()
        provider = self.make_provider(backend)
        provider.get_prayer_times(self.location, DAY)

        nearby = Location(41.0051, 28.9784)
        self.assertEqual(provider.get_prayer_times(nearby, DAY).source, "cache")
        self.assertEqual(backend.fetch_timings.call_count, 1)

    def test_expired_cache_refetches(self):
        backend = make_backend()
        provider = self.make_provider(backend)
        provider.get_prayer_times(self.location, DAY)

        self.clock.now += timedelta(hours=25)
        self.assertEqual(provider.get_prayer_times(self.location, DAY).source, "network")
        self.assertEqual(backend.fetch_timings.call_count, 2)

    def test_network_failure_uses_stale_cache_reanchored(self):
        backend = make_backend()
        provider = self.make_provider(backend)
        provider.get_prayer_times(self.location, DAY)

        backend.fetch_timings.side_effect = requests.ConnectionError("offline")
        next_day = DAY + timedelta(days=1)
        instants = provider.get_prayer_times(self.location, next_day)

        self.assertEqual(instants.source, "stale_cache")
        self.assertEqual(instants.date, next_day)
        self.assertEqual(instants.fajr, at(5, 30, next_day))
        self.assertEqual(instants.isha, at(21, 15, next_day))

    def test_offline_skips_network(self):
        backend = make_backend()
        provider = self.make_provider(backend, is_online=lambda: False)

        instants = provider.get_prayer_times(self.location, DAY)

        backend.fetch_timings.assert_not_called()
        self.assertEqual(instants.source, "fallback")

    def test_fallback_when_nothing_else(self):
        provider = self.make_provider(
            make_backend(error=requests.Timeout("slow")),
            fallback=StaticScheduleBackend({"fallback_times": {"fajr": "04:45"}}),
        )

        instants = provider.get_prayer_times(self.location, DAY)

        self.assertEqual(instants.source, "fallback")
        self.assertEqual(instants.fajr, at(4, 45))
        self.assertEqual(instants.sunrise, at(6, 50))
        self.assertEqual(instants.isha, at(20, 30))

    def test_out_of_order_response_is_rejected(self):
        bad = dict(TIMINGS, isha="19:00")
        provider = self.make_provider(make_backend(bad))

        instants = provider.get_prayer_times(self.location, DAY)

        self.assertEqual(instants.source, "fallback")
        self.assertEqual(self.cache.get_latest_entry(), None)

    def test_broken_fallback_raises_unavailable(self):
        provider = self.make_provider(
            make_backend(error=requests.ConnectionError("offline")),
            fallback=StaticScheduleBackend({"fallback_times": {"fajr": "soon"}}),
        )
        with self.assertRaises(UnavailableError):
            provider.get_prayer_times(self.location, DAY)

    def test_timezone_anchoring(self):
        tz = pytz.timezone("Europe/Istanbul")
        provider = self.make_provider(make_backend(), tz=tz)

        instants = provider.get_prayer_times(self.location, DAY)

        self.assertEqual(instants.fajr.utcoffset(), timedelta(hours=3))
        self.assertEqual(instants.fajr, tz.localize(datetime(2024, 6, 1, 5, 30)))

    def test_lookup_for(self):
        backend = make_backend()
        lookup = self.make_provider(backend).lookup_for(self.location)

        self.assertEqual(lookup.instants_for(DAY).asr, at(16, 47))
        args = backend.fetch_timings.call_args[0]
        self.assertEqual(args, (ISTANBUL[0], ISTANBUL[1], DAY))


if __name__ == "__main__":
    unittest.main()

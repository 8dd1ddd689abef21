"""
PrayerTimeProvider: the day's prayer instants for a location.

Lookup order: fresh cache entry -> time source (when online) -> most recent cache entry of any
date/location re-anchored onto the requested day -> static fallback schedule. The chain is
total in practice; UnavailableError only surfaces when the fallback schedule itself is broken.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

import requests

from salah.core.cache_helper import CacheHelper
from salah.core.errors import UnavailableError
from salah.prayer.completion import PrayerInstantsLookup
from salah.prayer.models import PRAYER_NAMES, Location, PrayerInstants, date_key
from salah.prayer.prayer_base import PrayerBackend, StaticScheduleBackend, parse_time_string

logger = logging.getLogger(__name__)


class PrayerTimeProvider:
    CACHE_NAMESPACE = "prayer_times"

    def __init__(
        self,
        backend: PrayerBackend,
        cache: CacheHelper,
        fallback: Optional[PrayerBackend] = None,
        tz: Any = None,
        is_online: Optional[Callable[[], bool]] = None,
    ):
        self.backend = backend
        self.cache = cache
        self.fallback = fallback or StaticScheduleBackend({})
        self.tz = tz
        self.is_online = is_online or (lambda: True)

    def get_prayer_times(self, location: Location, prayer_date: date) -> PrayerInstants:
        cache_key = self._cache_key(location, prayer_date)

        cached = self.cache.get_cached_content(cache_key)
        if cached:
            try:
                if Location(**cached["location"]).is_near(location):
                    logger.debug(f"Using cached prayer times for {cache_key}")
                    return self.build_instants(prayer_date, cached["timings"], source="cache")
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding unusable cache entry {cache_key}: {e}")

        if self.is_online():
            try:
                timings = self.backend.fetch_timings(location.latitude, location.longitude, prayer_date)
                instants = self.build_instants(prayer_date, timings, source="network")
                self.cache.save_to_cache(cache_key, {
                    "date": date_key(prayer_date),
                    "location": location._asdict(),
                    "timings": {name: value.strftime("%H:%M") for name, value in self._times_of_day(instants).items()},
                })
                logger.info(f"Fetched prayer times for {date_key(prayer_date)} at {location.latitude},{location.longitude}")
                return instants
            except (requests.RequestException, KeyError, ValueError) as e:
                logger.error(f"Error fetching prayer times: {e}")
        else:
            logger.info("Offline: skipping prayer time fetch")

        stale = self.cache.get_latest_entry()
        if stale:
            try:
                instants = self.build_instants(prayer_date, stale["content"]["timings"], source="stale_cache")
                logger.warning(
                    f"Using stale prayer times cached {stale['cached_at']} for {stale['content'].get('date')} "
                    f"in place of {date_key(prayer_date)}"
                )
                return instants
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Stale cache entry unusable: {e}")

        try:
            timings = self.fallback.fetch_timings(location.latitude, location.longitude, prayer_date)
            logger.warning(f"Using static fallback prayer times for {date_key(prayer_date)}")
            return self.build_instants(prayer_date, timings, source="fallback")
        except (KeyError, ValueError) as e:
            raise UnavailableError(f"No prayer times available for {date_key(prayer_date)}") from e

    def lookup_for(self, location: Location) -> PrayerInstantsLookup:
        """Narrow capability handed to the completion store."""
        return _LocationLookup(self, location)

    def build_instants(self, prayer_date: date, timings: Dict[str, str], source: str) -> PrayerInstants:
        """Anchor "HH:MM" strings to prayer_date (in self.tz when set). Missing prayers raise KeyError."""
        values = {name: self._anchor(prayer_date, timings[name]) for name in PRAYER_NAMES}
        sunrise = timings.get("sunrise")
        values["sunrise"] = self._anchor(prayer_date, sunrise) if sunrise else None
        return PrayerInstants(date=prayer_date, source=source, **values)

    def _anchor(self, prayer_date: date, time_str: str) -> datetime:
        naive = datetime.combine(prayer_date, parse_time_string(time_str))
        if self.tz is None:
            return naive
        if hasattr(self.tz, "localize"):
            return self.tz.localize(naive)
        return naive.replace(tzinfo=self.tz)

    @staticmethod
    def _times_of_day(instants: PrayerInstants) -> Dict[str, datetime]:
        result = dict(instants.prayers())
        if instants.sunrise is not None:
            result["sunrise"] = instants.sunrise
        return result

    @staticmethod
    def _cache_key(location: Location, prayer_date: date) -> str:
        rounded = location.rounded()
        return f"{date_key(prayer_date)}:{rounded.latitude:.2f}:{rounded.longitude:.2f}"


class _LocationLookup(PrayerInstantsLookup):
    def __init__(self, provider: PrayerTimeProvider, location: Location):
        self.provider = provider
        self.location = location

    def instants_for(self, prayer_date: date) -> PrayerInstants:
        return self.provider.get_prayer_times(self.location, prayer_date)

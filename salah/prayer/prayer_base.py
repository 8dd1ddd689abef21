import re
import requests
from datetime import date, datetime, time
from typing import Dict, Any, Optional
import logging
from abc import ABC, abstractmethod

from salah.prayer.models import INSTANT_NAMES

DEFAULT_FALLBACK_TIMES = {
    "fajr": "05:30",
    "sunrise": "06:50",
    "dhuhr": "12:30",
    "asr": "16:00",
    "maghrib": "19:00",
    "isha": "20:30",
}

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})")


def parse_time_string(time_str: str) -> time:
    """'HH:MM', optionally followed by seconds or a zone suffix like ' (EET)' -> time"""
    match = _TIME_RE.match(str(time_str))
    if not match:
        raise ValueError(f"Invalid prayer time: {time_str!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid prayer time: {time_str!r}")
    return time(hour, minute)


class PrayerBackend(ABC):
    """Base class for prayer time sources"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def fetch_timings(self, latitude: float, longitude: float, prayer_date: date) -> Dict[str, str]:
        """Get the day's timings
        Args:
            latitude, longitude: Location in decimal degrees
            prayer_date: Calendar day to compute
        Returns:
            {prayer_name: "HH:MM"} with fajr, dhuhr, asr, maghrib, isha and optionally sunrise
        """
        pass


class AladhanBackend(PrayerBackend):
    """Prayer times backend using api.aladhan.com"""

    BASE_URL = "https://api.aladhan.com/v1/timings"
    DEFAULT_METHOD = 2  # ISNA
    DEFAULT_TIMEOUT = 10

    PRAYER_NAMES = {
        'Fajr': 'fajr',
        'Sunrise': 'sunrise',
        'Dhuhr': 'dhuhr',
        'Asr': 'asr',
        'Maghrib': 'maghrib',
        'Isha': 'isha'
    }

    def fetch_timings(self, latitude: float, longitude: float, prayer_date: date) -> Dict[str, str]:
        # noon of the requested day keeps the unix timestamp inside the same calendar date
        timestamp = int(datetime.combine(prayer_date, time(12, 0)).timestamp())
        url = f"{self.config.get('base_url', self.BASE_URL)}/{timestamp}"
        params = {
            'latitude': latitude,
            'longitude': longitude,
            'method': self.config.get('method', self.DEFAULT_METHOD)
        }
        timeout = self.config.get('timeout', self.DEFAULT_TIMEOUT)

        self.logger.info(f"Making API request to {url} with params {params}")
        response = requests.get(url, params=params, timeout=timeout)
        response.raise_for_status()
        body = response.json()
        if body.get("code") != 200:
            raise ValueError(f"Aladhan API error: {body.get('status')}")

        raw_timings = body["data"]["timings"]
        timings = {}
        for api_name, prayer in self.PRAYER_NAMES.items():
            if api_name in raw_timings:
                timings[prayer] = str(raw_timings[api_name]).strip()[:5]
        self.logger.debug(f"Timings for {prayer_date}: {timings}")
        return timings


class StaticScheduleBackend(PrayerBackend):
    """Fixed local times; the last resort when neither network nor cache can answer."""

    def fetch_timings(self, latitude: float, longitude: float, prayer_date: date) -> Dict[str, str]:
        configured = self.config.get('fallback_times') or {}
        timings = dict(DEFAULT_FALLBACK_TIMES)
        timings.update({name: str(value) for name, value in configured.items() if name in INSTANT_NAMES})
        return timings


_BACKENDS = {
    "aladhan": AladhanBackend,
    "static": StaticScheduleBackend,
}


def create_backend(backend_type: str, config: Dict[str, Any]) -> Optional[PrayerBackend]:
    """Factory: return backend instance for given type."""
    cls = _BACKENDS.get((backend_type or "").lower())
    if not cls:
        logging.getLogger(__name__).error(f"Unknown prayer times backend: {backend_type}")
        return None
    return cls(config)

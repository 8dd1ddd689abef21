"""
Prayer domain types: locations, daily prayer instants, completion records, stats.
Records serialize to the JSON shapes kept in the key/value store.
"""
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

# The five daily prayers, in order. Sunrise is an instant but not a prayer.
PRAYER_NAMES = ("fajr", "dhuhr", "asr", "maghrib", "isha")
INSTANT_NAMES = ("fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha")

PRAYER_DISPLAY = {
    "fajr": "Fajr",
    "sunrise": "Sunrise",
    "dhuhr": "Dhuhr",
    "asr": "Asr",
    "maghrib": "Maghrib",
    "isha": "Isha",
}

DATE_KEY_FORMAT = "%Y-%m-%d"


def date_key(d: date) -> str:
    """Calendar date -> "YYYY-MM-DD" record key."""
    return d.strftime(DATE_KEY_FORMAT)


def parse_date_key(key: str) -> date:
    return datetime.strptime(key, DATE_KEY_FORMAT).date()


def validate_prayer_name(prayer_name: str) -> str:
    if prayer_name not in PRAYER_NAMES:
        raise ValueError(f"Unknown prayer: {prayer_name!r} (expected one of {', '.join(PRAYER_NAMES)})")
    return prayer_name


class Location(namedtuple("Location", ["latitude", "longitude"])):
    """Coordinates in decimal degrees."""

    __slots__ = ()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Location":
        try:
            lat = float(config.get("latitude", config.get("lat")))
            lon = float(config.get("longitude", config.get("lon")))
        except (TypeError, ValueError):
            raise ValueError("location.latitude and location.longitude must be configured as numbers")
        if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            raise ValueError("Latitude must be between -90 and 90, longitude between -180 and 180")
        return cls(lat, lon)

    def rounded(self, places: int = 2) -> "Location":
        return Location(round(self.latitude, places), round(self.longitude, places))

    def is_near(self, other: "Location", tolerance: float = 0.01) -> bool:
        """Within ~1.1 km at the default tolerance."""
        return (
            abs(self.latitude - other.latitude) < tolerance
            and abs(self.longitude - other.longitude) < tolerance
        )


_InstantsBase = namedtuple(
    "PrayerInstants",
    ["date", "fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha", "source"],
    defaults=("network",),
)


class PrayerInstants(_InstantsBase):
    """
    Start instants of one day's prayers. sunrise may be None when the time source omits it.
    source records where the times came from: cache, network, stale_cache or fallback.
    """

    __slots__ = ()

    def __new__(cls, date, fajr, sunrise, dhuhr, asr, maghrib, isha, source="network"):
        self = super().__new__(cls, date, fajr, sunrise, dhuhr, asr, maghrib, isha, source)
        present = [(name, getattr(self, name)) for name in INSTANT_NAMES if getattr(self, name) is not None]
        for (prev_name, prev), (name, current) in zip(present, present[1:]):
            if not prev < current:
                raise ValueError(f"Prayer instants out of order: {prev_name} {prev} >= {name} {current}")
        return self

    def time_of(self, prayer_name: str) -> datetime:
        if prayer_name not in INSTANT_NAMES:
            raise ValueError(f"Unknown prayer instant: {prayer_name!r}")
        value = getattr(self, prayer_name)
        if value is None:
            raise ValueError(f"No {prayer_name} instant for {self.date}")
        return value

    def prayers(self) -> List[Tuple[str, datetime]]:
        """The five prayers as (name, instant), fajr first."""
        return [(name, getattr(self, name)) for name in PRAYER_NAMES]

    def to_dict(self) -> Dict[str, Any]:
        data = {"date": date_key(self.date), "source": self.source}
        for name in INSTANT_NAMES:
            value = getattr(self, name)
            data[name] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "PrayerInstants":
        values = {}
        for name in INSTANT_NAMES:
            raw = data.get(name)
            values[name] = datetime.fromisoformat(raw) if raw else None
        return cls(
            date=parse_date_key(data["date"]),
            source=source or data.get("source", "cache"),
            **values,
        )


@dataclass
class CompletionRecord:
    """Completion state of the five prayers for one date, plus when each was marked."""

    date: str
    prayers: Dict[str, bool] = field(default_factory=lambda: {name: False for name in PRAYER_NAMES})
    marked_at: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls, key: str) -> "CompletionRecord":
        return cls(date=key)

    @property
    def completed_count(self) -> int:
        return sum(1 for name in PRAYER_NAMES if self.prayers.get(name))

    @property
    def is_complete(self) -> bool:
        return self.completed_count == len(PRAYER_NAMES)

    def is_prayed(self, prayer_name: str) -> bool:
        return bool(self.prayers.get(prayer_name))

    def set(self, prayer_name: str, completed: bool, marked_at: Optional[datetime] = None) -> None:
        self.prayers[prayer_name] = completed
        if completed:
            self.marked_at[prayer_name] = (marked_at or datetime.now()).isoformat()
        else:
            self.marked_at.pop(prayer_name, None)

    def copy(self) -> "CompletionRecord":
        return CompletionRecord(date=self.date, prayers=dict(self.prayers), marked_at=dict(self.marked_at))

    def to_dict(self) -> Dict[str, Any]:
        data = {"date": self.date, "prayers": {name: bool(self.prayers.get(name)) for name in PRAYER_NAMES}}
        if self.marked_at:
            data["markedAt"] = dict(self.marked_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], key: Optional[str] = None) -> "CompletionRecord":
        """Normalize a stored record: always five booleans, markedAt only for true prayers."""
        raw_prayers = data.get("prayers") or {}
        prayers = {name: bool(raw_prayers.get(name, False)) for name in PRAYER_NAMES}
        raw_marked = data.get("markedAt") or {}
        marked_at = {name: str(raw_marked[name]) for name in PRAYER_NAMES if prayers[name] and raw_marked.get(name)}
        return cls(date=data.get("date") or key, prayers=prayers, marked_at=marked_at)


PrayerStreak = namedtuple("PrayerStreak", ["current_streak", "longest_streak", "last_completed_date"])

PeriodStats = namedtuple("PeriodStats", ["completed", "total", "percentage"])

PrayerStats = namedtuple("PrayerStats", ["today", "week", "month"])

"""Shared fixtures: a fixed clock, an in-memory store, and the 2024-06-01 Istanbul timetable."""

from datetime import date, datetime, time
from pathlib import Path
from typing import Dict, List, Tuple

import yaml

from salah.core.db import Database
from salah.core.errors import TransportError
from salah.core.storage import KeyValueStore
from salah.notifications.transport import NotificationTransport
from salah.prayer.completion import PrayerInstantsLookup
from salah.prayer.models import PRAYER_NAMES, PrayerInstants

ISTANBUL = (41.0082, 28.9784)
DAY = date(2024, 6, 1)

TIMINGS = {
    "fajr": "05:30",
    "dhuhr": "13:03",
    "asr": "16:47",
    "maghrib": "19:45",
    "isha": "21:15",
}


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def make_instants(day: date = DAY, source: str = "network") -> PrayerInstants:
    values = {}
    for name in PRAYER_NAMES:
        hour, minute = TIMINGS[name].split(":")
        values[name] = at(int(hour), int(minute), day)
    return PrayerInstants(date=day, sunrise=None, source=source, **values)


def make_store() -> KeyValueStore:
    return KeyValueStore(Database("sqlite://"))


class FixedClock:
    """Callable now_fn whose time the test moves by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TimetableLookup(PrayerInstantsLookup):
    def __init__(self):
        self.calls: List[date] = []

    def instants_for(self, prayer_date: date) -> PrayerInstants:
        self.calls.append(prayer_date)
        return make_instants(prayer_date)


class RecordingTransport(NotificationTransport):
    """Keeps armed events in a dict; ids in fail_ids raise TransportError."""

    def __init__(self, fail_ids=()):
        self.armed: Dict[str, Tuple[datetime, dict]] = {}
        self.cancelled: List[str] = []
        self.fail_ids = set(fail_ids)

    def schedule_one_shot(self, event_id, fires_at, payload):
        if event_id in self.fail_ids:
            raise TransportError(f"cannot arm {event_id}", event_id=event_id)
        self.armed[event_id] = (fires_at, payload)

    def cancel(self, event_id):
        self.cancelled.append(event_id)
        self.armed.pop(event_id, None)

    def cancel_all(self):
        self.armed.clear()


def write_app_config(config_dir: str, **sections) -> str:
    """Config file for a SalahApp that never touches the network: static backend on TIMINGS."""
    data = {
        "location": {"latitude": ISTANBUL[0], "longitude": ISTANBUL[1]},
        "prayer_times": {"backend": "static", "fallback_times": dict(TIMINGS)},
        "logging": {"level": "DEBUG", "file": None},
    }
    data.update(sections)
    path = Path(config_dir) / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)

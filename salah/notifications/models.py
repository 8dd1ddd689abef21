"""
Notification settings and scheduled events.
"""
from collections import namedtuple
from datetime import date, datetime
from typing import Any, Dict, Optional

from salah.prayer.models import date_key, parse_date_key


class EventKind:
    """Kind of scheduled notification."""
    BEFORE = "before"  # one-shot, minutes_before ahead of the prayer
    REMINDER = "reminder"  # repeating inside the window after the prayer starts


DEFAULT_REMINDER_WINDOW_MINUTES = 60


class NotificationSettings(namedtuple(
    "NotificationSettings",
    ["enabled", "minutes_before", "reminder_interval", "reminder_window"],
    defaults=(True, 15, 30, DEFAULT_REMINDER_WINDOW_MINUTES),
)):
    """Immutable snapshot of the notifications config section. Minutes throughout."""

    __slots__ = ()

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> "NotificationSettings":
        config = config or {}
        defaults = cls()
        settings = cls(
            enabled=bool(config.get("enabled", defaults.enabled)),
            minutes_before=int(config.get("minutes_before", defaults.minutes_before)),
            reminder_interval=int(config.get("reminder_interval", defaults.reminder_interval)),
            reminder_window=int(config.get("reminder_window_minutes", defaults.reminder_window)),
        )
        for name in ("minutes_before", "reminder_interval", "reminder_window"):
            if getattr(settings, name) <= 0:
                raise ValueError(f"notifications.{name} must be greater than 0")
        return settings


_EventBase = namedtuple(
    "NotificationEvent",
    ["id", "prayer_name", "prayer_date", "prayer_time", "kind", "fires_at"],
)


class NotificationEvent(_EventBase):
    __slots__ = ()

    @staticmethod
    def make_id(prayer_date: date, prayer_name: str, kind: str, fires_at: datetime) -> str:
        return f"{date_key(prayer_date)}:{prayer_name}:{kind}:{fires_at:%H%M}"

    @classmethod
    def create(cls, prayer_name: str, prayer_time: datetime, kind: str, fires_at: datetime) -> "NotificationEvent":
        prayer_date = prayer_time.date()
        return cls(
            id=cls.make_id(prayer_date, prayer_name, kind, fires_at),
            prayer_name=prayer_name,
            prayer_date=prayer_date,
            prayer_time=prayer_time,
            kind=kind,
            fires_at=fires_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prayerName": self.prayer_name,
            "prayerDate": date_key(self.prayer_date),
            "prayerTime": self.prayer_time.isoformat(),
            "type": self.kind,
            "scheduledTime": self.fires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationEvent":
        prayer_time = datetime.fromisoformat(data["prayerTime"])
        prayer_date = parse_date_key(data["prayerDate"]) if data.get("prayerDate") else prayer_time.date()
        return cls(
            id=data["id"],
            prayer_name=data["prayerName"],
            prayer_date=prayer_date,
            prayer_time=prayer_time,
            kind=data["type"],
            fires_at=datetime.fromisoformat(data["scheduledTime"]),
        )

"""Current/next prayer classification and countdown helpers. Pure functions of (instants, now)."""

from datetime import datetime, timedelta
from typing import Optional, Tuple

from salah.prayer.models import PrayerInstants


def get_current_prayer(instants: PrayerInstants, now: datetime) -> Optional[str]:
    """
    Prayer whose window [instant_i, instant_i+1) contains now. After isha the window stays open
    as isha (tomorrow's fajr is not known here). Before fajr there is no current prayer.
    """
    current = None
    for name, instant in instants.prayers():
        if now >= instant:
            current = name
        else:
            break
    return current


def get_next_prayer(instants: PrayerInstants, now: datetime) -> str:
    """First prayer strictly after now; fajr once all have passed (the caller reads that as tomorrow)."""
    for name, instant in instants.prayers():
        if instant > now:
            return name
    return "fajr"


def get_next_prayer_time(instants: PrayerInstants, now: datetime) -> Tuple[str, datetime]:
    """
    Next prayer and when it starts. After isha this is today's fajr shifted by one day, which
    is close to but not exactly tomorrow's fajr.
    """
    for name, instant in instants.prayers():
        if instant > now:
            return name, instant
    return "fajr", instants.fajr + timedelta(days=1)


def seconds_until(target_dt: datetime, now: datetime) -> int:
    """Return seconds from now until target_dt (can be negative if past)."""
    delta = target_dt - now
    return int(delta.total_seconds())


def format_countdown(seconds: int) -> str:
    """Format seconds into HH:MM:SS countdown string."""
    if seconds < 0:
        return "00:00:00"
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02d}:{m:02d}:{s:02d}"

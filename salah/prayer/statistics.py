"""
Completion statistics derived from a CompletionStore snapshot.

Streak policy: today does not break a streak until the day ends. A fully completed today
extends the streak; an unfinished today is skipped and the count starts from yesterday.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Mapping, Optional

from dateutil.relativedelta import relativedelta

from salah.prayer.completion import CompletionStore
from salah.prayer.models import (
    PRAYER_NAMES,
    CompletionRecord,
    PeriodStats,
    PrayerStats,
    PrayerStreak,
    date_key,
)

logger = logging.getLogger(__name__)

STREAK_WINDOW_DAYS = 365
PRAYERS_PER_DAY = len(PRAYER_NAMES)


def completed_count(index: Mapping[str, CompletionRecord], day: date) -> int:
    record = index.get(date_key(day))
    return record.completed_count if record else 0


def is_day_complete(index: Mapping[str, CompletionRecord], day: date) -> bool:
    return completed_count(index, day) == PRAYERS_PER_DAY


def daily_ratio(index: Mapping[str, CompletionRecord], day: date) -> float:
    return completed_count(index, day) / PRAYERS_PER_DAY


def period_stats(index: Mapping[str, CompletionRecord], start: date, end: date, today: date) -> PeriodStats:
    """Totals over [start, end]; only days up to today count, missing days count as zero completed."""
    completed = 0
    total = 0
    day = start
    last = min(end, today)
    while day <= last:
        completed += completed_count(index, day)
        total += PRAYERS_PER_DAY
        day += timedelta(days=1)
    percentage = (completed / total) * 100 if total else 0.0
    return PeriodStats(completed=completed, total=total, percentage=percentage)


def week_bounds(today: date):
    """Monday..Sunday of the ISO week containing today."""
    start = today - timedelta(days=today.weekday())
    return start, start + timedelta(days=6)


def month_bounds(today: date):
    start = today.replace(day=1)
    return start, start + relativedelta(months=1, days=-1)


def compute_stats(index: Mapping[str, CompletionRecord], today: date) -> PrayerStats:
    today_done = completed_count(index, today)
    return PrayerStats(
        today=PeriodStats(
            completed=today_done,
            total=PRAYERS_PER_DAY,
            percentage=daily_ratio(index, today) * 100,
        ),
        week=period_stats(index, *week_bounds(today), today=today),
        month=period_stats(index, *month_bounds(today), today=today),
    )


def compute_streak(index: Mapping[str, CompletionRecord], today: date) -> PrayerStreak:
    window_start = today - timedelta(days=STREAK_WINDOW_DAYS - 1)

    current = 0
    day = today if is_day_complete(index, today) else today - timedelta(days=1)
    while day >= window_start and is_day_complete(index, day):
        current += 1
        day -= timedelta(days=1)

    longest = 0
    run = 0
    last_completed: Optional[date] = None
    day = window_start
    while day <= today:
        if is_day_complete(index, day):
            run += 1
            longest = max(longest, run)
            last_completed = day
        else:
            run = 0
        day += timedelta(days=1)

    return PrayerStreak(
        current_streak=current,
        longest_streak=longest,
        last_completed_date=date_key(last_completed) if last_completed else None,
    )


class StatisticsEngine:
    """Recomputes stats and streaks from a fresh completion snapshot on every call."""

    def __init__(self, completion_store: CompletionStore, now_fn: Callable[[], datetime] = datetime.now):
        self.completion_store = completion_store
        self.now_fn = now_fn

    def _snapshot(self) -> Dict[str, CompletionRecord]:
        return self.completion_store.get_all_records()

    def get_stats(self, today: Optional[date] = None) -> PrayerStats:
        return compute_stats(self._snapshot(), today or self.now_fn().date())

    def get_streak(self, today: Optional[date] = None) -> PrayerStreak:
        streak = compute_streak(self._snapshot(), today or self.now_fn().date())
        logger.debug(f"Streak: {streak}")
        return streak

    def get_daily_ratio(self, day: date) -> float:
        return daily_ratio(self._snapshot(), day)

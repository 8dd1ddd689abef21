"""
Prayer API: times, completion progress, history and stats. Mounted at /api/prayer/.
Validation and storage errors are mapped to HTTP status codes by the server's exception handlers.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from salah.prayer.clock import (
    format_countdown,
    get_current_prayer,
    get_next_prayer_time,
    seconds_until,
)
from salah.prayer.models import CompletionRecord, parse_date_key, validate_prayer_name


class PrayerTimesResponse(BaseModel):
    date: date
    source: str
    fajr: datetime
    sunrise: Optional[datetime] = None
    dhuhr: datetime
    asr: datetime
    maghrib: datetime
    isha: datetime
    current_prayer: Optional[str] = None
    next_prayer: Optional[str] = None
    next_prayer_time: Optional[datetime] = None
    countdown: Optional[str] = None


class CompletionRecordResponse(BaseModel):
    """Pydantic view of CompletionRecord; serializes from the dataclass."""

    model_config = ConfigDict(from_attributes=True)

    date: str
    prayers: Dict[str, bool]
    marked_at: Dict[str, str] = {}


class MarkRequest(BaseModel):
    completed: bool = True


class PeriodStatsResponse(BaseModel):
    completed: int
    total: int
    percentage: float


class StatsResponse(BaseModel):
    today: PeriodStatsResponse
    week: PeriodStatsResponse
    month: PeriodStatsResponse
    current_streak: int
    longest_streak: int
    last_completed_date: Optional[str] = None


def _parse_date(value: str) -> date:
    try:
        return parse_date_key(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid date {value!r}, expected YYYY-MM-DD")


def _record_response(record: CompletionRecord) -> CompletionRecordResponse:
    return CompletionRecordResponse.model_validate(record)


def get_router(salah_app) -> APIRouter:
    """Return router for prayer endpoints; mounted with prefix /api/prayer."""
    router = APIRouter(tags=["Prayer"])

    @router.get("/times", response_model=PrayerTimesResponse)
    def get_times(day: Optional[str] = Query(None, alias="date")) -> PrayerTimesResponse:
        """Prayer times for a date (today by default). Current/next prayer only for today."""
        now = salah_app.now_fn()
        prayer_date = _parse_date(day) if day else now.date()
        instants = salah_app.get_prayer_times(prayer_date)

        data = {name: getattr(instants, name) for name in ("fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha")}
        response = PrayerTimesResponse(date=instants.date, source=instants.source, **data)
        if prayer_date == now.date():
            next_name, next_time = get_next_prayer_time(instants, now)
            response.current_prayer = get_current_prayer(instants, now)
            response.next_prayer = next_name
            response.next_prayer_time = next_time
            response.countdown = format_countdown(seconds_until(next_time, now))
        return response

    @router.get("/progress/{day}", response_model=CompletionRecordResponse)
    def get_progress(day: str) -> CompletionRecordResponse:
        return _record_response(salah_app.completion_store.get_record(_parse_date(day)))

    @router.post("/progress/{day}/{prayer}", response_model=CompletionRecordResponse)
    def mark_progress(day: str, prayer: str, body: Optional[MarkRequest] = None) -> CompletionRecordResponse:
        prayer_date = _parse_date(day)
        try:
            validate_prayer_name(prayer)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        completed = body.completed if body is not None else True
        record = salah_app.completion_store.mark_prayer(prayer_date, prayer, completed)
        return _record_response(record)

    @router.get("/history", response_model=List[CompletionRecordResponse])
    def get_history(days: int = Query(30, ge=1, le=366)) -> List[CompletionRecordResponse]:
        """Records for the last `days` days, newest first. Days never marked come back all false."""
        today = salah_app.now_fn().date()
        return [
            _record_response(salah_app.completion_store.get_record(today - timedelta(days=offset)))
            for offset in range(days)
        ]

    @router.get("/stats", response_model=StatsResponse)
    def get_stats() -> StatsResponse:
        stats = salah_app.statistics.get_stats()
        streak = salah_app.statistics.get_streak()
        return StatsResponse(
            today=PeriodStatsResponse(**stats.today._asdict()),
            week=PeriodStatsResponse(**stats.week._asdict()),
            month=PeriodStatsResponse(**stats.month._asdict()),
            **streak._asdict(),
        )

    return router

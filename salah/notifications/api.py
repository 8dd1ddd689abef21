"""
Notification API: the persisted pending set and an explicit reconcile. Mounted at /api/notifications/.
"""
from datetime import date, datetime
from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from salah.notifications.models import NotificationEvent


class NotificationEventResponse(BaseModel):
    id: str
    prayer_name: str
    prayer_date: date
    prayer_time: datetime
    kind: str
    fires_at: datetime


def _to_response(events: List[NotificationEvent]) -> List[NotificationEventResponse]:
    return [NotificationEventResponse(**event._asdict()) for event in events]


def get_router(salah_app) -> APIRouter:
    router = APIRouter(tags=["Notifications"])

    @router.get("/pending", response_model=List[NotificationEventResponse])
    def get_pending() -> List[NotificationEventResponse]:
        return _to_response(salah_app.scheduler.get_pending_events())

    @router.post("/sync", response_model=List[NotificationEventResponse])
    def sync() -> List[NotificationEventResponse]:
        """Same as coming back to the foreground: drop past events, re-arm the rest."""
        return _to_response(salah_app.on_foreground())

    return router

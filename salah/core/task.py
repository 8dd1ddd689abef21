"""
Base task type and abstract BaseTask with next_run persistence in DB.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytz
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from salah.core.db import Database
from salah.core.models import TaskSchedule

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"
    HOURLY = "hourly"
    INTERVAL_SECONDS = "interval_seconds"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """Compute next run datetime from schedule_type, schedule_config, and last_run.

    DAILY times are wall-clock in schedule_config["timezone"] (a pytz zone name), or in the
    system local zone when it is absent; the result is naive UTC like every other stored timestamp.
    """
    now = now or _utc_now()
    if last_run is None:
        last_run = now

    if schedule_type == TaskType.DAILY and schedule_config:
        time_str = schedule_config.get("time", "00:00")
        parts = str(time_str).strip().split(":")
        hour = int(parts[0]) if parts else 0
        minute = int(parts[1]) if len(parts) > 1 else 0
        zone_name = schedule_config.get("timezone")
        zone = pytz.timezone(zone_name) if zone_name else None

        local_last = last_run.replace(tzinfo=timezone.utc).astimezone(zone).replace(tzinfo=None)
        wall = local_last.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if wall <= local_last:
            wall += timedelta(days=1)
        next_run = zone.localize(wall) if zone else wall.astimezone()
        return next_run.astimezone(timezone.utc).replace(tzinfo=None)

    if schedule_type == TaskType.HOURLY:
        return last_run + timedelta(hours=1)

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    return last_run + timedelta(days=1)


def get_next_run_from_db(database: Database, task_name: str) -> Optional[datetime]:
    """Read next_run_at for a task. Returns None if no row or next_run_at is null (task will run immediately)."""
    try:
        with database.session_scope() as session:
            row = session.execute(
                select(TaskSchedule).where(TaskSchedule.task_name == task_name)
            ).scalars().first()
            if row and row.next_run_at is not None:
                return row.next_run_at
    except SQLAlchemyError as e:
        logger.debug(f"get_next_run_from_db {task_name}: {e}")
    return None


def upsert_task_schedule(
    database: Database,
    task_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    next_run_at: Optional[datetime] = None,
    last_run_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
) -> None:
    """Create or update TaskSchedule row. If next_run_at not given: for new row leave it null (run immediately); for existing row leave next_run_at unchanged."""
    with database.session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = _utc_now()
        if row:
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            if next_run_at is not None:
                row.next_run_at = next_run_at
            if last_run_at is not None:
                row.last_run_at = last_run_at
            if last_error is not None:
                row.last_error = last_error
            row.updated_at = now
        else:
            session.add(TaskSchedule(
                task_name=task_name,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                next_run_at=next_run_at,
                last_run_at=last_run_at,
                last_error=last_error,
                created_at=now,
                updated_at=now,
            ))


def update_after_run(database: Database, task_name: str, error: Optional[str] = None) -> None:
    """Update last_run_at, last_error and next_run_at in DB after a task run."""
    with database.session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        if not row:
            return
        now = _utc_now()
        row.last_run_at = now
        row.last_error = error
        row.next_run_at = compute_next_run(row.schedule_type, row.schedule_config, now)
        row.updated_at = now


class BaseTask(ABC):
    """
    Abstract base for background tasks. Subclasses implement run();
    base helps with get_next_run and persisting next_run in DB.
    """

    def __init__(
        self,
        database: Database,
        task_name: str,
        schedule_type: str,
        schedule_config: Optional[Dict[str, Any]] = None,
    ):
        self.database = database
        self.task_name = task_name
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_next_run(self, last_run: Optional[datetime] = None) -> datetime:
        """Compute next run time from schedule_type and schedule_config."""
        return compute_next_run(self.schedule_type, self.schedule_config, last_run)

    def ensure_scheduled(self, next_run_at: Optional[datetime] = None) -> None:
        """Ensure TaskSchedule row exists so next run survives restarts. Does not overwrite next_run_at on existing row."""
        upsert_task_schedule(
            self.database,
            self.task_name,
            self.schedule_type,
            self.schedule_config,
            next_run_at=next_run_at,
        )

    def __call__(self) -> None:
        """Run once, recording the outcome and the next run in DB. Errors are recorded, then re-raised."""
        try:
            self.run()
        except Exception as e:
            update_after_run(self.database, self.task_name, error=str(e))
            raise
        update_after_run(self.database, self.task_name)

    @abstractmethod
    def run(self) -> None:
        """Execute the task."""
        pass

"""
Core DB models: key/value storage and task schedule (next_run persistence).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import Column, String, DateTime, Text, JSON, select

from salah.core.db import Base, Database


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoredValue(Base):
    """One durable key -> string entry (completion index, pending notifications, prayer time cache)."""
    __tablename__ = "stored_values"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


class TaskSchedule(Base):
    """Per-task schedule: next_run_at and last_run_at so scheduling survives restarts."""
    __tablename__ = "task_schedules"

    task_name = Column(String(255), primary_key=True)
    schedule_type = Column(String(64), nullable=False)  # DAILY, HOURLY, INTERVAL_SECONDS
    schedule_config = Column(JSON, nullable=True)  # e.g. {"time": "00:05"}, {"interval_seconds": 86400}
    next_run_at = Column(DateTime(timezone=False), nullable=True)  # null = run immediately (e.g. new DB)
    last_run_at = Column(DateTime(timezone=False), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


def get_all_task_schedules(database: Database) -> List[Dict[str, Any]]:
    """Return all TaskSchedule rows as list of dicts (for API). Datetimes are naive UTC."""
    with database.session_scope() as session:
        rows = session.execute(select(TaskSchedule)).scalars().all()
        return [
            {
                "task_name": r.task_name,
                "schedule_type": r.schedule_type,
                "schedule_config": r.schedule_config,
                "next_run_at": r.next_run_at,
                "last_run_at": r.last_run_at,
                "last_error": r.last_error,
            }
            for r in rows
        ]

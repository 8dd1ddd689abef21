"""
Background task: recompute the day's prayer times and reschedule notifications, persist next_run in DB.
"""
import logging
from typing import Any, Callable, Dict, Optional

from salah.core.db import Database
from salah.core.task import BaseTask, TaskType

logger = logging.getLogger(__name__)

TASK_NAME = "prayer_refresh"
DEFAULT_SCHEDULE_TIME = "00:05"


class PrayerRefreshTask(BaseTask):
    """Daily refresh of prayer times and the notification schedule."""

    def __init__(
        self,
        database: Database,
        config: Dict[str, Any],
        refresh: Callable[[], Any],
        timezone_name: Optional[str] = None,
    ):
        schedule_type, schedule_config = self._schedule_from_config(config)
        if schedule_type == TaskType.DAILY and timezone_name:
            # "00:05" is read on the same clock the app uses for "today"
            schedule_config["timezone"] = timezone_name
        super().__init__(database, TASK_NAME, schedule_type, schedule_config)
        self.refresh = refresh

    def _schedule_from_config(self, config: Dict[str, Any]) -> tuple:
        schedule_time = config.get("schedule_time")
        update_interval = config.get("update_interval")
        if update_interval and not schedule_time:
            return TaskType.INTERVAL_SECONDS, {"interval_seconds": int(update_interval)}
        try:
            parts = str(schedule_time or DEFAULT_SCHEDULE_TIME).strip().split(":")
            hour = int(parts[0])
            minute = int(parts[1]) if len(parts) > 1 else 0
            if not (0 <= hour < 24 and 0 <= minute < 60):
                raise ValueError(schedule_time)
            return TaskType.DAILY, {"time": f"{hour:02d}:{minute:02d}"}
        except (ValueError, IndexError):
            logger.warning(f"Invalid refresh.schedule_time {schedule_time!r}, using {DEFAULT_SCHEDULE_TIME}")
            return TaskType.DAILY, {"time": DEFAULT_SCHEDULE_TIME}

    def run(self) -> None:
        self.logger.info("Refreshing prayer times and notifications")
        self.refresh()

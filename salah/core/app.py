import copy
import json
import logging
import sys
import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytz

from salah.core.cache_helper import CacheHelper
from salah.core.config import Config
from salah.core.db import Database
from salah.core.storage import KeyValueStore
from salah.core.task_manager import TaskManager
from salah.notifications.models import NotificationEvent, NotificationSettings
from salah.notifications.scheduler import NotificationScheduler
from salah.notifications.transport import DesktopNotificationTransport, NotificationTransport
from salah.prayer.completion import CompletionStore
from salah.prayer.models import PrayerInstants
from salah.prayer.prayer_base import StaticScheduleBackend, create_backend
from salah.prayer.provider import PrayerTimeProvider
from salah.prayer.statistics import StatisticsEngine
from salah.prayer.sync import build_backup, restore_from_backup
from salah.prayer.task import TASK_NAME, PrayerRefreshTask

REMINDER_WINDOW_TASK_PREFIX = "reminder_window:"

# config sections whose change reschedules the day
_SCHEDULE_SECTIONS = ("location", "notifications", "prayer_times")


class SalahApp:
    """Builds every service once and wires them together. Nothing here is a module-level singleton."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        watch_config: bool = True,
        setup_logging: bool = True,
        transport: Optional[NotificationTransport] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        if setup_logging:
            self._setup_logging()

        self.tz = self._load_timezone()
        self.now_fn = now_fn or self._make_now_fn(self.tz)
        self.location = self.config.get_location()

        self.database = Database(config_data=self.config.data)
        self.store = KeyValueStore(self.database)

        prayer_config = self.config.get_section("prayer_times")
        self.cache = CacheHelper(
            self.store,
            namespace=PrayerTimeProvider.CACHE_NAMESPACE,
            max_age=timedelta(hours=float(prayer_config.get("cache_hours", 24))),
            now_fn=self.now_fn,
        )
        self.provider = PrayerTimeProvider(
            backend=self._build_backend(prayer_config),
            cache=self.cache,
            fallback=StaticScheduleBackend(prayer_config),
            tz=self.tz,
        )
        self.lookup = self.provider.lookup_for(self.location)

        self.completion_store = CompletionStore(self.store, self.lookup, now_fn=self.now_fn)
        self.transport = transport or DesktopNotificationTransport(now_fn=self.now_fn)
        self.scheduler = NotificationScheduler(self.transport, self.store, now_fn=self.now_fn)
        self.completion_store.register_completion_callback(self.scheduler.on_prayer_marked)
        self.statistics = StatisticsEngine(self.completion_store, now_fn=self.now_fn)

        self.task_manager = TaskManager(self.database)
        self.refresh_task = PrayerRefreshTask(
            self.database,
            self.config.get_section("refresh"),
            self.refresh_day,
            timezone_name=self.config.get_timezone_name(),
        )
        self.task_manager.register_task(self.refresh_task)

        self._watched_sections = self._snapshot_sections()
        self._stop_event = threading.Event()

    def _setup_logging(self):
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        logging_config = self.config.get_section("logging")
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        # Create formatter with line numbers
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        # File handler
        log_file = logging_config.get("file")
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Salah application starting...")

    def _load_timezone(self):
        name = self.config.get_timezone_name()
        if not name:
            return None
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone in location.timezone: {name}")

    @staticmethod
    def _make_now_fn(tz) -> Callable[[], datetime]:
        # prayer instants are anchored in tz, so "now" must be comparable with them
        if tz is None:
            return datetime.now
        return lambda: datetime.now(tz)

    def _build_backend(self, prayer_config: Dict[str, Any]):
        backend = create_backend(prayer_config.get("backend", "aladhan"), prayer_config)
        if backend is None:
            self.logger.warning("Falling back to the static prayer schedule")
            backend = StaticScheduleBackend(prayer_config)
        return backend

    def _snapshot_sections(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(self.config.data.get(name)) for name in _SCHEDULE_SECTIONS}

    def notification_settings(self) -> NotificationSettings:
        try:
            return self.config.get_notification_settings()
        except ValueError as e:
            self.logger.error(f"Invalid notifications config, using defaults: {e}")
            return NotificationSettings()

    def get_prayer_times(self, prayer_date: Optional[date] = None) -> PrayerInstants:
        return self.provider.get_prayer_times(self.location, prayer_date or self.now_fn().date())

    def today_instants(self) -> PrayerInstants:
        return self.get_prayer_times()

    def refresh_day(self) -> List[NotificationEvent]:
        """Recompute today's prayer times and rebuild the notification schedule."""
        instants = self.today_instants()
        settings = self.notification_settings()
        self.logger.info(f"Refreshing schedule for {instants.date} (times from {instants.source})")

        self.scheduler.schedule_day(instants, settings)
        self.completion_store.with_record(
            instants.date, lambda record: self.scheduler.schedule_reminders(instants, settings, record)
        )
        self._arm_reminder_windows(instants)
        return self.scheduler.get_pending_events()

    def on_foreground(self) -> List[NotificationEvent]:
        """Restart/foreground path: restore the persisted schedule and re-open any open reminder window."""
        instants = self.today_instants()
        settings = self.notification_settings()
        pending = self.completion_store.with_record(
            instants.date, lambda record: self.scheduler.reconcile(instants, settings, record)
        )
        self._arm_reminder_windows(instants)
        return pending

    def _arm_reminder_windows(self, instants: PrayerInstants) -> None:
        """One timer per prayer still ahead today; when it fires the prayer's reminder window opens."""
        self.task_manager.cancel_tasks_with_prefix(REMINDER_WINDOW_TASK_PREFIX)
        now = self.now_fn()
        for prayer_name, prayer_time in instants.prayers():
            if prayer_time <= now:
                continue
            self.task_manager.schedule_task(
                f"{REMINDER_WINDOW_TASK_PREFIX}{prayer_name}",
                lambda name=prayer_name: self._open_reminder_window(instants, name),
                (prayer_time - now).total_seconds(),
            )

    def _open_reminder_window(self, instants: PrayerInstants, prayer_name: str) -> None:
        settings = self.notification_settings()
        # a mark racing this timer must see the reminders it has to cancel
        self.completion_store.with_record(
            instants.date,
            lambda record: self.scheduler.schedule_reminders(instants, settings, record, prayer_names=[prayer_name]),
        )

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Handle configuration changes"""
        self.logger.info("Handling config change")
        try:
            current = self._snapshot_sections()
            changed = [name for name in _SCHEDULE_SECTIONS if current[name] != self._watched_sections.get(name)]
            self._watched_sections = current
            if not changed:
                return

            if "location" in changed:
                self.location = self.config.get_location()
                self.lookup.location = self.location
            if "prayer_times" in changed:
                prayer_config = self.config.get_section("prayer_times")
                self.provider.backend = self._build_backend(prayer_config)
                self.provider.fallback = StaticScheduleBackend(prayer_config)
            self.logger.info(f"Rescheduling after change to: {', '.join(changed)}")
            self.refresh_day()
        except Exception as e:
            self.logger.error(f"Error handling config change: {e}", exc_info=True)

    def export_backup(self, path: str) -> Dict[str, Any]:
        payload = build_backup(self.completion_store, now=self.now_fn())
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        self.logger.info(f"Exported {len(payload['prayerProgress'])} records to {path}")
        return payload

    def restore_backup(self, path: str) -> int:
        with open(path) as f:
            payload = json.load(f)
        merged = restore_from_backup(self.completion_store, payload)
        return len(merged)

    def run(self):
        from salah.api import run_api_server

        try:
            try:
                run_api_server(self)
            except Exception as e:
                self.logger.warning(f"API server not started: {e}")

            self.on_foreground()
            self.refresh_day()
            self.task_manager.schedule_registered_task(TASK_NAME)

            self.logger.info("Salah running; press Ctrl+C to stop")
            while not self._stop_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self.task_manager.stop()
        self.transport.cancel_all()
        self.config.cleanup()
        self.database.dispose()

"""
Single place for scheduling: in-memory timers and DB-backed registered tasks.
"""
import logging
import threading
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List

from salah.core.db import Database
from salah.core.task import BaseTask, get_next_run_from_db


class TaskManager:
    def __init__(self, database: Database):
        self.database = database
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self._registered_tasks: Dict[str, BaseTask] = {}
        self._lock = threading.Lock()
        self._stopped = False

    def schedule_task(self, name: str, callback: Callable[[], Any], delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds. An existing task with the same name is replaced."""
        if self._stopped:
            self.logger.debug(f"Not scheduling {name}: task manager stopped")
            return
        delay = max(0.0, delay)
        self.logger.info(f"Scheduling task {name} with delay {int(delay)} seconds")
        scheduled_time = datetime.now().timestamp() + delay
        timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
        timer.daemon = True
        timer.scheduled_time = scheduled_time

        with self._lock:
            existing = self.tasks.pop(name, None)
            if existing:
                self.logger.info(f"Cancelling existing task {name}")
                existing.cancel()
            self.tasks[name] = timer
        timer.start()
        self.logger.info(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")

    def cancel_task(self, name: str) -> bool:
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer:
            timer.cancel()
            return True
        return False

    def cancel_tasks_with_prefix(self, prefix: str) -> int:
        with self._lock:
            names = [name for name in self.tasks if name.startswith(prefix)]
            timers = [self.tasks.pop(name) for name in names]
        for timer in timers:
            timer.cancel()
        return len(timers)

    def _run_task(self, name: str, callback: Callable[[], Any], delay: float, one_time: bool) -> None:
        """Run the task and reschedule if needed."""
        with self._lock:
            timer = self.tasks.get(name)
            if timer is not None and timer is threading.current_thread():
                del self.tasks[name]
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        if not one_time:
            self.schedule_task(name, callback, delay, one_time)

    def register_task(self, task: BaseTask) -> None:
        """Register a task whose next run is kept in the task_schedules table."""
        self._registered_tasks[task.task_name] = task
        task.ensure_scheduled()
        self.logger.debug(f"Registered task: {task.task_name}")

    def schedule_registered_task(self, task_name: str) -> None:
        """
        Schedule a registered task: run at next_run from DB (or immediately if past due).
        After running, the task updates next_run in DB; we reschedule again for the new next_run.
        """
        if task_name not in self._registered_tasks:
            self.logger.warning(f"No task registered: {task_name}")
            return
        next_run = get_next_run_from_db(self.database, task_name)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        # If next_run_at is null (no row or column null), run immediately
        if next_run is None:
            delay = 0
        else:
            delay = max(0, int((next_run - now).total_seconds()))
        self.schedule_task(task_name, lambda: self._run_registered_and_reschedule(task_name), delay)

    def _run_registered_and_reschedule(self, task_name: str) -> None:
        """Run the registered task then reschedule for next_run from DB."""
        task = self._registered_tasks.get(task_name)
        if task:
            try:
                task()
            except Exception as e:
                self.logger.exception(f"Registered task {task_name} failed: {e}")
        self.schedule_registered_task(task_name)

    def run_task_now(self, task_name: str) -> bool:
        """Run a registered task once immediately (e.g. manual refresh)."""
        task = self._registered_tasks.get(task_name)
        if not task:
            self.logger.warning(f"No task registered: {task_name}")
            return False
        try:
            task()
            return True
        except Exception as e:
            self.logger.exception(f"Run task now {task_name} failed: {e}")
            return False

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        with self._lock:
            items = list(self.tasks.items())
        for name, timer in items:
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks."""
        self._stopped = True
        with self._lock:
            timers = list(self.tasks.values())
            self.tasks.clear()
        for timer in timers:
            timer.cancel()

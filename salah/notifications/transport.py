"""
Notification transports. The scheduler only needs schedule_one_shot / cancel / cancel_all;
delivery is best-effort and the UI tolerates duplicates.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from threading import Timer
from typing import Any, Callable, Dict, List, Optional

from plyer import notification as plyer_notification

from salah.core.errors import TransportError

APP_NAME = "Salah"


class NotificationTransport(ABC):
    @abstractmethod
    def schedule_one_shot(self, event_id: str, fires_at: datetime, payload: Dict[str, Any]) -> None:
        """Arm one notification. Re-using an id replaces the earlier one."""
        pass

    @abstractmethod
    def cancel(self, event_id: str) -> None:
        pass

    @abstractmethod
    def cancel_all(self) -> None:
        pass


class DesktopNotificationTransport(NotificationTransport):
    """In-process timers that show a desktop notification (plyer) when they fire."""

    def __init__(self, now_fn: Callable[[], datetime] = datetime.now, timeout: int = 15):
        self.now_fn = now_fn
        self.timeout = timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self._timers: Dict[str, Timer] = {}
        self._lock = threading.Lock()

    def schedule_one_shot(self, event_id: str, fires_at: datetime, payload: Dict[str, Any]) -> None:
        delay = (fires_at - self.now_fn()).total_seconds()
        if delay <= 0:
            self.logger.debug(f"Skipping past-due notification {event_id}")
            return
        try:
            timer = Timer(delay, self._fire, args=(event_id, payload))
            timer.daemon = True
            with self._lock:
                existing = self._timers.pop(event_id, None)
                if existing:
                    existing.cancel()
                self._timers[event_id] = timer
            timer.start()
        except RuntimeError as e:
            raise TransportError(f"Could not arm notification {event_id}: {e}", event_id=event_id) from e
        self.logger.info(f"Notification {event_id} armed for {fires_at}")

    def cancel(self, event_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(event_id, None)
        if timer:
            timer.cancel()
            self.logger.info(f"Notification {event_id} cancelled")

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        self.logger.info(f"Cancelled {len(timers)} notifications")

    def active_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def _fire(self, event_id: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._timers.pop(event_id, None)
        self.send(payload.get("title", APP_NAME), payload.get("message", ""))

    def send(self, title: str, message: str) -> None:
        """Show a desktop notification now. Display failures are logged; the timer is already spent."""
        try:
            plyer_notification.notify(
                app_name=APP_NAME,
                title=title,
                message=message,
                timeout=self.timeout,
            )
        except Exception as e:
            # plyer raises backend-specific errors (dbus, win32, NotImplementedError)
            self.logger.error(f"Desktop notification failed: {e}")


def build_payload(title: str, message: str, **extra: Optional[str]) -> Dict[str, Any]:
    payload = {"title": title, "message": message}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload

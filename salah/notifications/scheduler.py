"""
NotificationScheduler: what to arm on the transport for a day's prayers.

Per prayer and day: Unscheduled -> Scheduled(before) -> [prayer instant] -> ReminderWindowOpen
-> Cancelled (marked complete) | Closed (window elapsed).

The persisted pending set is the source of truth. Every change is written to storage first and
then applied to the transport, so reconcile() after a restart re-arms exactly what is recorded.
"""
import logging
import threading
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from salah.core.storage import KeyValueStore
from salah.notifications.models import EventKind, NotificationEvent, NotificationSettings
from salah.notifications.transport import NotificationTransport, build_payload
from salah.prayer.models import PRAYER_DISPLAY, CompletionRecord, PrayerInstants, date_key

PENDING_STORAGE_KEY = "salah:scheduledNotifications"


class NotificationScheduler:
    def __init__(
        self,
        transport: NotificationTransport,
        store: KeyValueStore,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        self.transport = transport
        self.store = store
        self.now_fn = now_fn
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.RLock()
        # instants and settings of the most recently scheduled day, for re-opening reminders
        self._day: Optional[Tuple[PrayerInstants, NotificationSettings]] = None

    def get_pending_events(self) -> List[NotificationEvent]:
        raw = self.store.get_json(PENDING_STORAGE_KEY, default=[]) or []
        events = []
        for item in raw:
            try:
                events.append(NotificationEvent.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Dropping unreadable pending notification {item!r}: {e}")
        return events

    def schedule_day(self, instants: PrayerInstants, settings: NotificationSettings) -> List[NotificationEvent]:
        """Replace every pending event for the day with fresh "before" events."""
        now = self.now_fn()
        with self._lock:
            self._day = (instants, settings)
            pending = self.get_pending_events()
            replaced = [e for e in pending if e.prayer_date == instants.date]
            # other dates keep only what has not fired yet
            kept = [e for e in pending if e.prayer_date != instants.date and e.fires_at > now]

            new_events = []
            if settings.enabled:
                lead = timedelta(minutes=settings.minutes_before)
                for prayer_name, prayer_time in instants.prayers():
                    fires_at = prayer_time - lead
                    if fires_at > now:
                        new_events.append(
                            NotificationEvent.create(prayer_name, prayer_time, EventKind.BEFORE, fires_at)
                        )
            else:
                self.logger.info("Notifications disabled; clearing the day's schedule")

            self._save_pending(kept + new_events)
            self._cancel_on_transport(e for e in replaced)
            self._arm(new_events)
            self.logger.info(
                f"Scheduled {len(new_events)} notifications for {date_key(instants.date)} "
                f"(replaced {len(replaced)})"
            )
            return new_events

    def schedule_reminders(
        self,
        instants: PrayerInstants,
        settings: NotificationSettings,
        record: CompletionRecord,
        prayer_names: Optional[Iterable[str]] = None,
    ) -> List[NotificationEvent]:
        """
        Arm "reminder" events for prayers that are not yet marked and whose window is open now.
        Reminders fire at instant + k * reminder_interval, strictly after now and up to window close.
        The instant itself is the window opening and carries no reminder, so for a 19:45 maghrib
        with a 30 minute interval the first one fires at 20:15.
        prayer_names limits the pass to those prayers; the others are left as they are.
        """
        if not settings.enabled:
            return []
        now = self.now_fn()
        names = set(prayer_names) if prayer_names is not None else None
        window = timedelta(minutes=settings.reminder_window)
        interval = timedelta(minutes=settings.reminder_interval)

        with self._lock:
            touched = set()
            new_events = []
            for prayer_name, prayer_time in instants.prayers():
                if names is not None and prayer_name not in names:
                    continue
                if record.is_prayed(prayer_name):
                    touched.add(prayer_name)
                    continue
                window_end = prayer_time + window
                if not (prayer_time <= now <= window_end):
                    continue
                touched.add(prayer_name)
                fires_at = prayer_time
                while fires_at <= window_end:
                    if fires_at > now:
                        new_events.append(
                            NotificationEvent.create(prayer_name, prayer_time, EventKind.REMINDER, fires_at)
                        )
                    fires_at += interval

            if not touched:
                return []

            pending = self.get_pending_events()
            new_ids = {e.id for e in new_events}
            replaced = [
                e for e in pending
                if e.kind == EventKind.REMINDER
                and e.prayer_date == instants.date
                and e.prayer_name in touched
            ]
            replaced_ids = {e.id for e in replaced}
            kept = [e for e in pending if e.id not in replaced_ids and e.fires_at > now]

            self._save_pending(kept + new_events)
            self._cancel_on_transport(e for e in replaced if e.id not in new_ids)
            self._arm(new_events)
            if new_events:
                self.logger.info(
                    f"Scheduled {len(new_events)} reminders for {date_key(instants.date)}: "
                    f"{', '.join(sorted({e.prayer_name for e in new_events}))}"
                )
            return new_events

    def cancel_for_prayer(self, prayer_name: str, prayer_date: date) -> List[NotificationEvent]:
        """Remove the prayer's pending reminders for the date. "before" events are left alone."""
        now = self.now_fn()
        with self._lock:
            pending = self.get_pending_events()
            removed = [
                e for e in pending
                if e.kind == EventKind.REMINDER and e.prayer_name == prayer_name and e.prayer_date == prayer_date
            ]
            if not removed:
                return []
            removed_ids = {e.id for e in removed}
            self._save_pending([e for e in pending if e.id not in removed_ids and e.fires_at > now])
            self._cancel_on_transport(removed)
            self.logger.info(f"Cancelled {len(removed)} reminders for {prayer_name} on {date_key(prayer_date)}")
            return removed

    def on_prayer_marked(self, prayer_date: date, prayer_name: str, completed: bool) -> None:
        """Completion callback: stop reminders when prayed, re-open the window when un-marked."""
        if completed:
            self.cancel_for_prayer(prayer_name, prayer_date)
            return
        with self._lock:
            day = self._day
        if day and day[0].date == prayer_date:
            instants, settings = day
            self.schedule_reminders(
                instants, settings, CompletionRecord.empty(date_key(prayer_date)), prayer_names=[prayer_name]
            )

    def reconcile(
        self,
        instants: PrayerInstants,
        settings: NotificationSettings,
        record: CompletionRecord,
    ) -> List[NotificationEvent]:
        """After restart or on foreground: drop past events, re-arm the rest, re-open reminder windows."""
        now = self.now_fn()
        with self._lock:
            self._day = (instants, settings)
            pending = self.get_pending_events()
            live = [e for e in pending if e.fires_at > now]
            self._save_pending(live)
            self._arm(live)
            self.logger.info(f"Reconciled notifications: re-armed {len(live)}, dropped {len(pending) - len(live)}")
            self.schedule_reminders(instants, settings, record)
            return self.get_pending_events()

    def cancel_all(self) -> None:
        with self._lock:
            self.store.remove(PENDING_STORAGE_KEY)
            self._day = None
            try:
                self.transport.cancel_all()
            except Exception as e:
                self.logger.error(f"Error cancelling all notifications: {e}")

    def _save_pending(self, events: List[NotificationEvent]) -> None:
        events = sorted(events, key=lambda e: (e.fires_at.isoformat(), e.id))
        self.store.set_json(PENDING_STORAGE_KEY, [e.to_dict() for e in events])

    def _arm(self, events: Iterable[NotificationEvent]) -> None:
        now = self.now_fn()
        for event in events:
            if event.fires_at <= now:
                continue
            try:
                self.transport.schedule_one_shot(event.id, event.fires_at, self._payload(event))
            except Exception as e:
                # one bad event must not stop the rest of the batch
                self.logger.error(f"Error scheduling notification {event.id}: {e}")

    def _cancel_on_transport(self, events: Iterable[NotificationEvent]) -> None:
        for event in events:
            try:
                self.transport.cancel(event.id)
            except Exception as e:
                self.logger.error(f"Error cancelling notification {event.id}: {e}")

    @staticmethod
    def _payload(event: NotificationEvent) -> dict:
        display = PRAYER_DISPLAY.get(event.prayer_name, event.prayer_name)
        at = event.prayer_time.strftime("%H:%M")
        if event.kind == EventKind.BEFORE:
            minutes = int((event.prayer_time - event.fires_at).total_seconds() // 60)
            title = f"{display} in {minutes} minutes"
            message = f"{display} prayer starts at {at}. Prepare for prayer."
        else:
            title = f"Have you prayed {display}?"
            message = f"{display} started at {at}. Mark it as prayed to stop these reminders."
        return build_payload(
            title,
            message,
            prayer=event.prayer_name,
            kind=event.kind,
            date=date_key(event.prayer_date),
        )

"""
CompletionStore: durable per-date prayer completion with time-gated writes.

The whole index (date key -> record) is one JSON document in the key/value store. Every write
reloads, mutates a copy, persists, and only then replaces the in-memory index, so a failed
write leaves memory matching what is stored.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from salah.core.errors import FutureDateError, PrematureMarkError
from salah.core.storage import KeyValueStore
from salah.prayer.models import CompletionRecord, PrayerInstants, date_key, validate_prayer_name

logger = logging.getLogger(__name__)

PROGRESS_STORAGE_KEY = "salah:prayerProgress"

# (prayer_date, prayer_name, completed)
CompletionCallback = Callable[[date, str, bool], None]


class PrayerInstantsLookup(ABC):
    """The one thing the completion store needs from prayer time computation."""

    @abstractmethod
    def instants_for(self, prayer_date: date) -> PrayerInstants:
        pass


class CompletionStore:
    def __init__(
        self,
        store: KeyValueStore,
        lookup: PrayerInstantsLookup,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.lookup = lookup
        self.now_fn = now_fn
        self._lock = threading.RLock()
        self._index: Optional[Dict[str, CompletionRecord]] = None
        self._callbacks: List[CompletionCallback] = []

    def register_completion_callback(self, callback: CompletionCallback) -> None:
        """Register a callback run after every successful mark_prayer"""
        self._callbacks.append(callback)

    def mark_prayer(self, prayer_date: date, prayer_name: str, completed: bool) -> CompletionRecord:
        """
        Set one prayer's completion for prayer_date and persist the index.

        Raises:
            ValueError: unknown prayer name
            FutureDateError: prayer_date is after today
            PrematureMarkError: completing today's prayer before its instant
            StorageError: the index could not be read or written
        """
        validate_prayer_name(prayer_name)
        now = self.now_fn()
        today = now.date()

        if prayer_date > today:
            raise FutureDateError(prayer_date, today)

        if completed and prayer_date == today:
            prayer_time = self.lookup.instants_for(prayer_date).time_of(prayer_name)
            if now < prayer_time:
                logger.info(f"Rejected early mark of {prayer_name}: now {now:%H:%M}, starts {prayer_time:%H:%M}")
                raise PrematureMarkError(prayer_name, prayer_date, prayer_time)

        key = date_key(prayer_date)
        with self._lock:
            index = self._load_index()
            updated = {k: r.copy() for k, r in index.items()}
            record = updated.get(key) or CompletionRecord.empty(key)
            record.set(prayer_name, completed, marked_at=now)
            updated[key] = record
            self._save_index(updated)
            self._index = updated
            logger.info(f"Prayer {prayer_name} on {key} marked as {'completed' if completed else 'not completed'}")

            # callbacks run under the lock so readers never see the write before its side effects
            for callback in self._callbacks:
                try:
                    callback(prayer_date, prayer_name, completed)
                except Exception as e:
                    logger.error(f"Completion callback failed for {prayer_name} on {key}: {e}", exc_info=True)

            return record.copy()

    def get_record(self, prayer_date: date) -> CompletionRecord:
        """Stored record for the date, or an all-false default (not persisted)."""
        key = date_key(prayer_date)
        with self._lock:
            record = self._load_index().get(key)
            return record.copy() if record else CompletionRecord.empty(key)

    def with_record(self, prayer_date: date, fn: Callable[[CompletionRecord], Any]) -> Any:
        """Run fn on the date's record while holding the store lock; no mark lands until fn returns."""
        with self._lock:
            return fn(self.get_record(prayer_date))

    def get_all_records(self) -> Dict[str, CompletionRecord]:
        """Snapshot of the full index; later writes do not affect it."""
        with self._lock:
            return {k: r.copy() for k, r in self._load_index().items()}

    def replace_all(self, records: Dict[str, CompletionRecord]) -> None:
        """Persist records as the whole index (used by restore)."""
        with self._lock:
            updated = {k: r.copy() for k, r in records.items()}
            self._save_index(updated)
            self._index = updated
            logger.info(f"Completion index replaced with {len(updated)} records")

    def clear_all(self) -> None:
        with self._lock:
            self.store.remove(PROGRESS_STORAGE_KEY)
            self._index = {}
            logger.info("Completion index cleared")

    def reload(self) -> None:
        """Drop the in-memory index so the next read goes to storage."""
        with self._lock:
            self._index = None

    def _load_index(self) -> Dict[str, CompletionRecord]:
        if self._index is None:
            raw = self.store.get_json(PROGRESS_STORAGE_KEY, default={}) or {}
            self._index = {key: CompletionRecord.from_dict(data, key=key) for key, data in raw.items()}
            logger.debug(f"Loaded {len(self._index)} completion records")
        return self._index

    def _save_index(self, index: Dict[str, CompletionRecord]) -> None:
        self.store.set_json(PROGRESS_STORAGE_KEY, {key: record.to_dict() for key, record in index.items()})

import json
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, Optional

from salah.core.errors import StorageError
from salah.core.storage import KeyValueStore

logger = logging.getLogger(__name__)


class CacheHelper:
    DEFAULT_MAX_AGE = timedelta(hours=24)
    KEY_PREFIX = "salah:cache:"

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str = "",
        max_age: Optional[timedelta] = None,
        now_fn: Callable[[], datetime] = datetime.now,
    ):
        """Initialize cache helper over the key/value store
        Args:
            store: Durable store the entries are written to
            namespace: Component specific key prefix (e.g. "prayer_times")
            max_age: How long an entry stays fresh, DEFAULT_MAX_AGE if None
            now_fn: Clock used for cached_at/expires_at stamps
        """
        self.store = store
        self.prefix = f"{self.KEY_PREFIX}{namespace}:" if namespace else self.KEY_PREFIX
        self.max_age = max_age or self.DEFAULT_MAX_AGE
        self.now_fn = now_fn

    def _get_cache_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _read_entry(self, cache_key: str) -> Optional[Dict[str, Any]]:
        raw = self.store.get(cache_key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            entry["cached_at"] = datetime.fromisoformat(entry["cached_at"])
            entry["expires_at"] = datetime.fromisoformat(entry["expires_at"])
            return entry
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cache entry {cache_key}: {e}")
            return None

    def get_cached_content(self, key: str) -> Optional[Any]:
        """Get cached content if it exists and has not expired"""
        try:
            entry = self._read_entry(self._get_cache_key(key))
        except StorageError as e:
            logger.error(f"Error reading cache: {e}")
            return None
        if entry is None:
            return None

        if self._naive(self.now_fn()) < self._naive(entry["expires_at"]):
            return entry["content"]
        logger.debug(f"Cache entry {key} expired at {entry['expires_at']}")
        return None

    def get_latest_entry(self) -> Optional[Dict[str, Any]]:
        """Most recently cached entry in this namespace regardless of age: {key, content, cached_at, expires_at}"""
        try:
            keys = self.store.get_all_keys_with_prefix(self.prefix)
            latest = None
            for cache_key in keys:
                entry = self._read_entry(cache_key)
                if entry is None:
                    continue
                if latest is None or self._naive(entry["cached_at"]) > self._naive(latest["cached_at"]):
                    entry["key"] = cache_key[len(self.prefix):]
                    latest = entry
            return latest
        except StorageError as e:
            logger.error(f"Error scanning cache: {e}")
            return None

    def save_to_cache(self, key: str, content: Any) -> None:
        """Save content with cached_at/expires_at stamps. Failures are logged, never raised."""
        try:
            now = self.now_fn()
            cache_data = {
                "cached_at": now.isoformat(),
                "expires_at": (now + self.max_age).isoformat(),
                "content": content,
            }
            self.store.set(self._get_cache_key(key), json.dumps(cache_data))
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Error saving to cache: {e}")

    def clear(self) -> int:
        """Remove every entry in this namespace. Returns number of entries removed."""
        keys = self.store.get_all_keys_with_prefix(self.prefix)
        for cache_key in keys:
            self.store.remove(cache_key)
        logger.info(f"Cleared {len(keys)} cache entries under {self.prefix}")
        return len(keys)

    @staticmethod
    def _naive(dt: datetime) -> datetime:
        # mixed aware/naive stamps compare as wall-clock time
        return dt.replace(tzinfo=None) if dt.tzinfo else dt

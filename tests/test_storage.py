"""Tests for the key/value store and the cache helper."""

import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from salah.core.cache_helper import CacheHelper
from salah.core.errors import StorageError
from tests.helpers import FixedClock, make_store


class TestKeyValueStore(unittest.TestCase):
    def setUp(self):
        self.store = make_store()

    def test_get_missing_key_returns_none(self):
        self.assertIsNone(self.store.get("nope"))

    def test_set_overwrites(self):
        self.store.set("a", "1")
        self.store.set("a", "2")
        self.assertEqual(self.store.get("a"), "2")

    def test_remove(self):
        self.store.set("a", "1")
        self.store.remove("a")
        self.assertIsNone(self.store.get("a"))
        # removing twice is fine
        self.store.remove("a")

    def test_prefix_listing_is_literal(self):
        self.store.set("cache_x:1", "a")
        self.store.set("cache_x:2", "b")
        self.store.set("cacheyx:3", "c")
        self.store.set("other", "d")
        self.assertEqual(self.store.get_all_keys_with_prefix("cache_x:"), ["cache_x:1", "cache_x:2"])

    def test_json_round_trip_and_default(self):
        self.assertEqual(self.store.get_json("doc", default={}), {})
        self.store.set_json("doc", {"b": [1, 2], "a": True})
        self.assertEqual(self.store.get_json("doc"), {"a": True, "b": [1, 2]})

    def test_corrupt_json_raises_storage_error(self):
        self.store.set("doc", "{not json")
        with self.assertRaises(StorageError):
            self.store.get_json("doc")


class TestCacheHelper(unittest.TestCase):
    def setUp(self):
        self.store = make_store()
        self.clock = FixedClock(datetime(2024, 6, 1, 12, 0))
        self.cache = CacheHelper(self.store, namespace="t", max_age=timedelta(hours=24), now_fn=self.clock)

    def test_fresh_entry_is_returned(self):
        self.cache.save_to_cache("k", {"v": 1})
        self.clock.now += timedelta(hours=23)
        self.assertEqual(self.cache.get_cached_content("k"), {"v": 1})

    def test_expired_entry_is_not_returned(self):
        self.cache.save_to_cache("k", {"v": 1})
        self.clock.now += timedelta(hours=24, seconds=1)
        self.assertIsNone(self.cache.get_cached_content("k"))

    def test_latest_entry_ignores_age(self):
        self.cache.save_to_cache("old", {"v": "old"})
        self.clock.now += timedelta(days=3)
        self.cache.save_to_cache("new", {"v": "new"})
        self.clock.now += timedelta(days=30)

        latest = self.cache.get_latest_entry()
        self.assertEqual(latest["key"], "new")
        self.assertEqual(latest["content"], {"v": "new"})

    def test_latest_entry_empty_namespace(self):
        self.assertIsNone(self.cache.get_latest_entry())

    def test_namespaces_are_separate(self):
        other = CacheHelper(self.store, namespace="u", now_fn=self.clock)
        other.save_to_cache("k", 1)
        self.assertIsNone(self.cache.get_cached_content("k"))
        self.assertIsNone(self.cache.get_latest_entry())

    def test_unreadable_entry_is_ignored(self):
        self.store.set("salah:cache:t:k", "garbage")
        self.assertIsNone(self.cache.get_cached_content("k"))

    def test_save_failure_is_logged_not_raised(self):
        with patch.object(self.store, "set", side_effect=StorageError("disk full")):
            self.cache.save_to_cache("k", {"v": 1})
        self.assertIsNone(self.cache.get_cached_content("k"))

    def test_clear(self):
        self.cache.save_to_cache("a", 1)
        self.cache.save_to_cache("b", 2)
        self.assertEqual(self.cache.clear(), 2)
        self.assertIsNone(self.cache.get_latest_entry())


if __name__ == "__main__":
    unittest.main()

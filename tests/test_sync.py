"""Tests for backup export and merge-on-restore."""

import unittest
from datetime import timedelta

from salah.prayer.completion import CompletionStore
from salah.prayer.models import PRAYER_NAMES, CompletionRecord
from salah.prayer.sync import MergeStrategy, MoreCompletedWins, build_backup, restore_from_backup
from tests.helpers import DAY, FixedClock, TimetableLookup, at, make_store


def remote_record(key, count):
    prayers = {name: i < count for i, name in enumerate(PRAYER_NAMES)}
    return {"date": key, "prayers": prayers}


class TestMoreCompletedWins(unittest.TestCase):
    def test_merge(self):
        local = {
            "a": CompletionRecord.from_dict(remote_record("a", 2)),
            "b": CompletionRecord.from_dict(remote_record("b", 3)),
            "c": CompletionRecord.from_dict(remote_record("c", 1)),
        }
        remote = {
            "a": CompletionRecord.from_dict(remote_record("a", 4)),
            "b": CompletionRecord.from_dict(remote_record("b", 3)),
            "d": CompletionRecord.from_dict(remote_record("d", 5)),
        }

        merged = MoreCompletedWins().merge(local, remote)

        self.assertEqual(merged["a"].completed_count, 4)
        # tie: local copy
        self.assertEqual(merged["b"], local["b"])
        self.assertIsNot(merged["b"], local["b"])
        self.assertEqual(merged["c"].completed_count, 1)
        self.assertEqual(merged["d"].completed_count, 5)


class TestBackupRestore(unittest.TestCase):
    def setUp(self):
        self.clock = FixedClock(at(22, 0))
        self.completion = CompletionStore(make_store(), TimetableLookup(), now_fn=self.clock)

    def test_build_backup(self):
        self.completion.mark_prayer(DAY, "fajr", True)

        backup = build_backup(self.completion, now=self.clock())

        self.assertEqual(backup["version"], 1)
        self.assertEqual(backup["exported_at"], "2024-06-01T22:00:00")
        self.assertTrue(backup["prayerProgress"]["2024-06-01"]["prayers"]["fajr"])
        self.assertEqual(backup["prayerProgress"]["2024-06-01"]["markedAt"]["fajr"], "2024-06-01T22:00:00")

    def test_restore_merges_and_persists(self):
        self.completion.mark_prayer(DAY, "fajr", True)
        older = (DAY - timedelta(days=3)).isoformat()
        payload = {
            "version": 1,
            "prayerProgress": {
                "2024-06-01": remote_record("2024-06-01", 0),
                older: remote_record(older, 5),
            },
        }

        merged = restore_from_backup(self.completion, payload)

        self.assertEqual(set(merged), {"2024-06-01", older})
        self.assertTrue(self.completion.get_record(DAY).prayers["fajr"])
        self.assertEqual(self.completion.get_record(DAY - timedelta(days=3)).completed_count, 5)

    def test_invalid_payloads(self):
        for payload in (None, {}, {"prayerProgress": []}, {"version": 2, "prayerProgress": {}}):
            with self.assertRaises(ValueError):
                restore_from_backup(self.completion, payload)

    def test_custom_strategy(self):
        class RemoteWins(MergeStrategy):
            def merge(self, local, remote):
                return dict(remote)

        self.completion.mark_prayer(DAY, "fajr", True)
        restore_from_backup(self.completion, {"prayerProgress": {}}, strategy=RemoteWins())

        self.assertEqual(self.completion.get_all_records(), {})


if __name__ == "__main__":
    unittest.main()

"""
Backup export and merge-on-restore for the completion index.

The merge is a per-date heuristic behind MergeStrategy so a stronger strategy can replace it
without touching CompletionStore.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from salah.prayer.completion import CompletionStore
from salah.prayer.models import CompletionRecord

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


class MergeStrategy(ABC):
    @abstractmethod
    def merge(
        self,
        local: Dict[str, CompletionRecord],
        remote: Dict[str, CompletionRecord],
    ) -> Dict[str, CompletionRecord]:
        """Combine two indexes into the one to persist."""
        pass


class MoreCompletedWins(MergeStrategy):
    """Per date keep the record with more completed prayers; local wins ties."""

    def merge(self, local, remote):
        merged = {key: record.copy() for key, record in remote.items()}
        for key, local_record in local.items():
            remote_record = merged.get(key)
            if remote_record is None or local_record.completed_count >= remote_record.completed_count:
                merged[key] = local_record.copy()
        return merged


def build_backup(completion_store: CompletionStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    records = completion_store.get_all_records()
    return {
        "version": BACKUP_VERSION,
        "exported_at": (now or datetime.now()).isoformat(),
        "prayerProgress": {key: record.to_dict() for key, record in sorted(records.items())},
    }


def restore_from_backup(
    completion_store: CompletionStore,
    payload: Dict[str, Any],
    strategy: Optional[MergeStrategy] = None,
) -> Dict[str, CompletionRecord]:
    """Merge a backup payload into the store and return the persisted index."""
    if not isinstance(payload, dict) or not isinstance(payload.get("prayerProgress"), dict):
        raise ValueError("Invalid backup: missing prayerProgress")
    version = payload.get("version", BACKUP_VERSION)
    if version > BACKUP_VERSION:
        raise ValueError(f"Unsupported backup version: {version}")

    remote = {
        key: CompletionRecord.from_dict(data, key=key)
        for key, data in payload["prayerProgress"].items()
        if isinstance(data, dict)
    }
    strategy = strategy or MoreCompletedWins()
    local = completion_store.get_all_records()
    merged = strategy.merge(local, remote)
    completion_store.replace_all(merged)
    logger.info(f"Restored backup: {len(remote)} remote, {len(local)} local, {len(merged)} merged records")
    return merged

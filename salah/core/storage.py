"""
Durable key -> string store over the stored_values table.

Each call is its own session; there is no multi-key transaction. Callers that keep related
keys (completion index, pending notifications, cache entries) tolerate one key being updated
while another is not.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from salah.core.db import Database
from salah.core.errors import StorageError
from salah.core.models import StoredValue

logger = logging.getLogger(__name__)


class KeyValueStore:
    def __init__(self, database: Database):
        self.database = database

    def get(self, key: str) -> Optional[str]:
        try:
            with self.database.session_scope() as session:
                row = session.get(StoredValue, key)
                return row.value if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading key {key}: {e}")
            raise StorageError(f"Failed to read {key}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self.database.session_scope() as session:
                now = datetime.now(timezone.utc).replace(tzinfo=None)
                row = session.get(StoredValue, key)
                if row:
                    row.value = value
                    row.updated_at = now
                else:
                    session.add(StoredValue(key=key, value=value, updated_at=now))
        except SQLAlchemyError as e:
            logger.error(f"Error writing key {key}: {e}")
            raise StorageError(f"Failed to write {key}") from e

    def remove(self, key: str) -> None:
        try:
            with self.database.session_scope() as session:
                session.execute(delete(StoredValue).where(StoredValue.key == key))
        except SQLAlchemyError as e:
            logger.error(f"Error removing key {key}: {e}")
            raise StorageError(f"Failed to remove {key}") from e

    def get_all_keys_with_prefix(self, prefix: str) -> List[str]:
        try:
            with self.database.session_scope() as session:
                # startswith() with autoescape so "_" and "%" in prefixes match literally
                stmt = (
                    select(StoredValue.key)
                    .where(StoredValue.key.startswith(prefix, autoescape=True))
                    .order_by(StoredValue.key)
                )
                return list(session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing keys with prefix {prefix}: {e}")
            raise StorageError(f"Failed to list keys with prefix {prefix}") from e

    def get_json(self, key: str, default: Any = None) -> Any:
        """Read and decode a JSON value. Undecodable content is a StorageError, not a silent default."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Corrupt JSON stored under {key}: {e}")
            raise StorageError(f"Corrupt value stored under {key}") from e

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, sort_keys=True))

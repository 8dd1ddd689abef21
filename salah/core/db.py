"""
SQLAlchemy engine, session, and base. DB path from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATA_DIR = Path.home() / ".salah"


def resolve_db_url(config_data: Optional[dict] = None) -> str:
    """Return the SQLAlchemy URL for database.path in config, or the default SQLite file."""
    if config_data:
        db_config = config_data.get("database") or {}
        url = db_config.get("url")
        if url:
            return url
        path = db_config.get("path")
        if path:
            path = Path(path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{path}"

    DEFAULT_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DEFAULT_DATA_DIR / 'salah.db'}"


class Database:
    """Owns one engine and session factory. Constructed by the app and passed to the stores."""

    def __init__(self, db_url: Optional[str] = None, config_data: Optional[dict] = None):
        if db_url is None:
            db_url = resolve_db_url(config_data)
        self.url = db_url

        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every thread sees the same in-memory database
            self.engine = create_engine(
                db_url,
                echo=False,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(db_url, echo=False, future=True)

        # Import model modules so tables are registered with Base
        from salah.core import models as _core_models  # noqa: F401

        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )
        logger.info(f"Database initialized: {db_url.split('?')[0]}")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Context manager for a single DB session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

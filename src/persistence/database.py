"""
src/persistence/database.py

Relational database access: engine and session management, the unit-of-work
context manager, and a UTC-aware datetime column type.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import DateTime, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.types import TypeDecorator

from src.config import config

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """
    DateTime column that only accepts timezone-aware values and always
    returns UTC-aware values, including on backends (SQLite) that drop the
    offset on storage.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetime is not allowed; use a timezone-aware value")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all tables."""


class Database:
    """
    Wraps an engine and its session factory.

    Usage:
        db = Database("sqlite:///interview.db")
        db.create_all()
        with db.transaction() as session:
            session.add(...)
    """

    def __init__(self, url: str, echo: bool = False, pool_size: Optional[int] = None):
        self.url = url
        engine_kwargs = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            # Scheduler duties run in worker threads
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True
            if pool_size:
                engine_kwargs["pool_size"] = pool_size

        self.engine: Engine = create_engine(url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Provide a session wrapped in a single transaction.

        Commits when the block exits normally and rolls back (re-raising) when
        it raises.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        # Register the table classes on Base.metadata
        from src.persistence import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        from src.persistence import models  # noqa: F401

        Base.metadata.drop_all(self.engine)

    def verify_connectivity(self) -> bool:
        """
        Run a trivial query against the database.

        Raises:
            Exception: If the database cannot be reached
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connectivity verification failed: {e}")
            raise

    def dispose(self) -> None:
        self.engine.dispose()


class DatabaseManager:
    """Holds the process-wide Database instance built from configuration."""

    _database: Optional[Database] = None
    _lock = threading.Lock()

    @classmethod
    def get_database(cls) -> Database:
        """
        Get the singleton Database, creating it on first call.

        Raises:
            ValueError: If no database URL is configured
        """
        if cls._database is None:
            with cls._lock:
                if cls._database is None:
                    db_config = config.get("database", {})
                    url = db_config.get("url")
                    if not url:
                        error_msg = "No database URL configured (database.url / DATABASE_URL)"
                        logger.critical(error_msg)
                        raise ValueError(error_msg)

                    cls._database = Database(
                        url, echo=db_config.get("echo", False), pool_size=db_config.get("pool_size")
                    )
                    logger.info(f"Database engine initialized for {cls._database.engine.url!r}")
        return cls._database

    @classmethod
    def set_database(cls, database: Optional[Database]) -> None:
        """Replace the singleton (used by runners and tests)."""
        with cls._lock:
            cls._database = database

    @classmethod
    def close_database(cls) -> None:
        with cls._lock:
            if cls._database is not None:
                logger.info("Disposing database engine...")
                cls._database.dispose()
                cls._database = None


def get_database() -> Database:
    return DatabaseManager.get_database()

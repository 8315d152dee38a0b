"""
Database connection management for Vigil.

A Database object owns one SQLAlchemy engine and session factory. The
job runner components receive it explicitly; the CLI uses a lazily
created process-wide default built from the loaded configuration.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from vigil_cli.config import get_config, VigilConfig

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


class Database:
    """
    SQLAlchemy engine and session factory for one database URL.

    Usage:
        db = Database("sqlite:///vigil.db")
        db.create_tables()
        with db.session() as session:
            job = session.get(ScheduledJob, job_id)
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        """
        Initialize the engine.

        Args:
            url: SQLAlchemy database URL
            echo: Log all SQL statements
        """
        self.url = url

        if url.startswith("sqlite"):
            if _is_memory_sqlite(url):
                # One shared connection, otherwise every session sees an empty database
                self.engine: Engine = create_engine(
                    url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                    echo=echo,
                )
            else:
                self._ensure_sqlite_dir(url)
                self.engine = create_engine(
                    url,
                    connect_args={
                        "check_same_thread": False,  # Allow cross-thread access
                        "timeout": 30,  # Wait for competing writers
                    },
                    pool_pre_ping=True,
                    echo=echo,
                )

            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_conn, connection_record):
                """Enable SQLite foreign key support."""
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            self.engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=echo,
            )

        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.debug(f"Database engine initialized: {url}")

    @staticmethod
    def _ensure_sqlite_dir(url: str) -> None:
        if url.startswith("sqlite:///"):
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Get a database session context manager.

        Commits on success, rolls back on error, always closes.

        Yields:
            SQLAlchemy Session
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all database tables."""
        from vigil_cli.database.models import Base

        Base.metadata.create_all(bind=self.engine)
        logger.debug("Database tables created")

    def drop_tables(self) -> None:
        """
        Drop all database tables.

        WARNING: This will delete all data!
        """
        from vigil_cli.database.models import Base

        Base.metadata.drop_all(bind=self.engine)
        logger.warning("Database tables dropped")

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()


# Process-wide default database (lazy-loaded)
_database: Optional[Database] = None


def get_database(config: Optional[VigilConfig] = None) -> Database:
    """
    Get or create the default database and make sure its tables exist.

    Args:
        config: Vigil configuration (uses global if not provided)

    Returns:
        The default Database
    """
    global _database

    if _database is not None:
        return _database

    if config is None:
        config = get_config()

    _database = Database(config.database_url)
    _database.create_tables()
    return _database


def set_database(database: Optional[Database]) -> None:
    """Replace the default database (None clears it)."""
    global _database
    _database = database

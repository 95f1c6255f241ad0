"""Database engine and session management."""
import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _install_sqlite_pragmas(engine: Engine) -> None:
    """
    Take over transaction control from the sqlite3 driver so that BEGIN is
    emitted for every SQLAlchemy transaction, DDL included.
    """

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA temp_store=MEMORY")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Owns the SQLite engine and hands out transactional sessions."""

    def __init__(self, db_path: str, timeout: float = 30.0, log_queries: bool = False):
        self.db_path = os.path.abspath(db_path)
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"timeout": timeout, "check_same_thread": False},
            echo=log_queries,
            pool_pre_ping=True,
        )
        _install_sqlite_pragmas(self.engine)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        logger.info(f"Database engine created for {self.db_path}")

    @classmethod
    def from_settings(cls, settings) -> "Database":
        os.makedirs(settings.sqlite_backup_path, exist_ok=True)
        return cls(
            settings.sqlite_db_path,
            timeout=settings.sqlite_timeout_seconds,
            log_queries=settings.db_log_queries,
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for database session.

        Commits on success and rolls back on any exception, so a unit of work
        is applied entirely or not at all.

        Yields:
            Database session
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def health_check(self) -> Dict[str, Any]:
        """Run a trivial query and stat the database file."""
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text("SELECT 1")).scalar()
            stats = os.stat(self.db_path)
            return {
                "status": "healthy",
                "details": {
                    "db_path": self.db_path,
                    "size": f"{stats.st_size / 1024 / 1024:.2f} MB",
                    "last_modified": datetime.fromtimestamp(stats.st_mtime).isoformat(),
                    "test_query": result,
                },
            }
        except Exception as e:
            return {"status": "unhealthy", "details": {"error": str(e)}}

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()
        logger.info("Database connections closed")

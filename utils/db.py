"""
Database utilities for SQLite operations.

Provides connection management and schema initialization for the job store
and the holiday calendar cache.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from utils.config import settings

logger = logging.getLogger(__name__)


def get_conn(db_path: str | Path | None = None) -> sqlite3.Connection:
    """
    Get SQLite database connection with dict-friendly row factory.

    Args:
        db_path: Database file, defaults to settings.SQLITE_PATH

    Returns:
        SQLite connection with row_factory set to sqlite3.Row

    Raises:
        sqlite3.Error: If connection fails
    """
    path = Path(db_path or settings.SQLITE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path), timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def connect(db_path: str | Path | None = None) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, roll back on error and always close it."""
    conn = get_conn(db_path)
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_schema(db_path: str | Path | None = None) -> None:
    """
    Initialize database schema by creating required tables if they don't exist.

    Creates:
    - jobs: verification jobs, one per visit per day
    - holiday_cache: per-year holiday calendar with expiry

    Raises:
        sqlite3.Error: If schema creation fails
    """
    with connect(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                visit_number TEXT NOT NULL,
                member_id TEXT NOT NULL,
                doctor_code TEXT NOT NULL,
                clinic_name TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                attempt INTEGER NOT NULL DEFAULT 0,
                response_data TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs (created_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_visit_number ON jobs (visit_number)")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS holiday_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                year INTEGER NOT NULL UNIQUE,
                data TEXT NOT NULL,
                cached_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_holiday_cache_expires ON holiday_cache (expires_at)")

    logger.info("DB schema ready")

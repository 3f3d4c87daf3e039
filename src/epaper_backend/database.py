"""
SQLite database for edition and category storage.

This module provides the connection handling and schema for the edition
records. Row-level reads and writes live in ``repository``; this module owns
connections and transactions.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/editions.db")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def utc_now() -> str:
    """Current UTC time as an ISO format string."""
    return datetime.now(timezone.utc).isoformat()


class EditionDatabase:
    """
    SQLite database for edition persistence.

    Connections run in autocommit mode; multi-statement work goes through
    ``transaction()``, which issues BEGIN/COMMIT/ROLLBACK explicitly so the
    caller decides where the unit of work starts and ends.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection for reads or single statements."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a unit of work in one transaction.

        Commits when the block exits normally and rolls back when it raises;
        the exception is always re-raised.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                logger.info("Transaction rolled back")
                raise
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    category_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    parent_id INTEGER REFERENCES categories(category_id) ON DELETE SET NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS editions (
                    edition_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    publication_date TEXT NOT NULL,
                    category_id INTEGER NOT NULL REFERENCES categories(category_id),
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'private'
                        CHECK (status IN ('published', 'private')),
                    status_reason TEXT,
                    pdf_path TEXT NOT NULL,
                    og_image_path TEXT,
                    list_thumb_path TEXT,
                    page_count INTEGER NOT NULL CHECK (page_count >= 1),
                    file_size_bytes INTEGER NOT NULL,
                    uploader_user_id INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_editions_publication_date
                ON editions(publication_date DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_editions_category
                ON editions(category_id)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_editions_status
                ON editions(status)
            """)

    def add_category(self, name: str, parent_id: Optional[int] = None) -> int:
        """
        Insert a category and return its id.

        Category management is handled elsewhere; this exists to seed the
        foreign key target.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO categories (name, parent_id, created_at) VALUES (?, ?, ?)",
                (name, parent_id, utc_now()),
            )
            return int(cursor.lastrowid)

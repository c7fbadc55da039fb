"""
SQLite storage for the append-only content history.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from .config import get_db_path, ensure_db_directory


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    ensure_db_directory()
    conn = sqlite3.connect(get_db_path(), timeout=10)
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        # History is append-only; restore writes a new row instead of editing one
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS content_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content_type TEXT NOT NULL,
                content_id TEXT NOT NULL,
                action TEXT NOT NULL,      -- 'update', 'update_failed', 'restore'
                old_snapshot TEXT,
                new_snapshot TEXT,
                actor TEXT NOT NULL,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                metadata TEXT              -- JSON: locale, file, backup, version
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_history_content_id_ts ON content_history(content_id, ts DESC)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            return 'content_history' in table_names
    except sqlite3.Error:
        return False

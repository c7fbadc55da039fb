"""
Data access for content history records.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import get_db, init_db
from .schema import HistoryRecord
from ..util.logging import logger

# Initialize database on module import
init_db()

_COLUMNS = "id, content_type, content_id, action, old_snapshot, new_snapshot, actor, ts, metadata"


def _row_to_record(row) -> HistoryRecord:
    record_id, content_type, content_id, action, old_snapshot, new_snapshot, actor, ts, metadata = row

    try:
        parsed_metadata = json.loads(metadata) if metadata else {}
    except (json.JSONDecodeError, ValueError):
        parsed_metadata = {"raw_data": metadata}

    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts)
        except ValueError:
            pass

    return HistoryRecord(
        id=record_id,
        content_type=content_type,
        content_id=content_id,
        action=action,
        old_snapshot=old_snapshot or "",
        new_snapshot=new_snapshot or "",
        actor=actor,
        timestamp=ts,
        metadata=parsed_metadata
    )


def add_history_record(content_type: str, content_id: str, action: str, old_snapshot: str,
                       new_snapshot: str, actor: str, metadata: Dict[str, Any] = None) -> int:
    """Append a history record and return its id."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO content_history (content_type, content_id, action, old_snapshot, new_snapshot, actor, ts, metadata) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (content_type, content_id, action, old_snapshot, new_snapshot, actor,
                 datetime.now().isoformat(), json.dumps(metadata or {}, default=str))
            )
            conn.commit()
            return cursor.lastrowid
    except sqlite3.Error as e:
        logger.error(f"Database error during add_history_record for content '{content_id}': {e}")
        raise


def get_history_record(history_id: int) -> Optional[HistoryRecord]:
    """Get a single history record by id."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM content_history WHERE id = ?", (history_id,))
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
    except sqlite3.Error as e:
        logger.error(f"Failed to get history record {history_id}: {e}")
        return None


def list_history(content_id: str, limit: int = 100, include_failed: bool = True) -> List[HistoryRecord]:
    """List history records for a content id, newest first."""
    try:
        if limit <= 0 or not content_id or not content_id.strip():
            return []

        query = f"SELECT {_COLUMNS} FROM content_history WHERE content_id = ?"
        if not include_failed:
            query += " AND action != 'update_failed'"
        query += " ORDER BY id DESC LIMIT ?"

        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(query, (content_id.strip(), limit))
            return [_row_to_record(row) for row in cursor.fetchall()]
    except sqlite3.Error as e:
        logger.error(f"Failed to list history for content '{content_id}': {e}")
        return []


def latest_history_record(content_id: str) -> Optional[HistoryRecord]:
    """Get the newest successful record for a content id."""
    records = list_history(content_id, limit=1, include_failed=False)
    return records[0] if records else None


def get_history_count(content_id: str = None) -> int:
    """Get count of history records for a content id or all content."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            if content_id and content_id.strip():
                cursor.execute("SELECT COUNT(*) FROM content_history WHERE content_id = ?", (content_id.strip(),))
            else:
                cursor.execute("SELECT COUNT(*) FROM content_history")
            result = cursor.fetchone()
            return result[0] if result else 0
    except sqlite3.Error as e:
        logger.error(f"Failed to get history count{' for ' + content_id if content_id else ''}: {e}")
        return 0

"""
SQLite database for persistent job storage.

This module provides a simple SQLite-based persistence layer for conversion
job records, ensuring queued jobs and terminal results survive server restarts.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


# Default database path
DEFAULT_DB_PATH = Path("data/jobs.db")

# Columns that hold JSON documents rather than scalars
_JSON_COLUMNS = {"mapping", "events"}
_DATETIME_COLUMNS = {"created_at", "updated_at"}


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _serialize_events(events: Iterable[Dict[str, Any]]) -> str:
    return json.dumps([
        {"timestamp": _serialize_datetime(e["timestamp"]), "message": e["message"]}
        for e in events
    ])


def _serialize_column(column: str, value: Any) -> Any:
    if column == "events":
        return _serialize_events(value or [])
    if column in _JSON_COLUMNS:
        return json.dumps(value or {})
    if column in _DATETIME_COLUMNS:
        return _serialize_datetime(value)
    return value


class JobDatabase:
    """
    SQLite database for job persistence.

    Thread-safe: each call opens its own connection and SQLite handles
    concurrent access with WAL mode. Callers that need read-modify-write
    atomicity serialise those cycles themselves.
    """

    COLUMNS = (
        "id", "status", "progress", "content_text", "mapping", "template_url",
        "docx_location", "pdf_location", "error", "events", "created_at", "updated_at",
    )

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    content_text TEXT NOT NULL,
                    mapping TEXT,
                    template_url TEXT,
                    docx_location TEXT,
                    pdf_location TEXT,
                    error TEXT,
                    events TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_created_at
                ON jobs(created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs(status)
            """)

    def save_job(self, job_data: Dict[str, Any]) -> None:
        """
        Save or replace a full job record.

        Args:
            job_data: Dictionary with one entry per column
        """
        placeholders = ", ".join("?" for _ in self.COLUMNS)
        values = [_serialize_column(column, job_data.get(column)) for column in self.COLUMNS]
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO jobs ({', '.join(self.COLUMNS)}) VALUES ({placeholders})",
                values,
            )

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a job by ID.

        Args:
            job_id: The job ID

        Returns:
            Job data dictionary or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()

            if not row:
                return None

            return self._row_to_dict(row)

    def list_jobs(self, statuses: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """
        List jobs ordered by creation time (newest first).

        Args:
            statuses: Optional status values to filter on

        Returns:
            List of job data dictionaries
        """
        query = "SELECT * FROM jobs"
        params: List[Any] = []
        if statuses is not None:
            wanted = list(statuses)
            if not wanted:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        query += " ORDER BY created_at DESC, rowid DESC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_dict(row) for row in rows]

    def update_job(self, job_id: str, **fields: Any) -> None:
        """
        Update selected columns of a job and refresh updated_at.

        Args:
            job_id: The job ID
            **fields: Column values to write; ``None`` clears a column
        """
        unknown = set(fields) - set(self.COLUMNS)
        if unknown:
            raise KeyError(f"Unknown job columns: {sorted(unknown)}")

        fields.setdefault("updated_at", datetime.utcnow())
        updates = [f"{column} = ?" for column in fields]
        values = [_serialize_column(column, value) for column, value in fields.items()]
        values.append(job_id)

        with self._get_connection() as conn:
            conn.execute(
                f"UPDATE jobs SET {', '.join(updates)} WHERE id = ?",
                values
            )

    def prune_jobs(self, status: str, keep: int) -> List[str]:
        """
        Delete the oldest jobs with a status beyond the newest ``keep``.

        Args:
            status: Status value to prune
            keep: Number of most recently updated records to retain

        Returns:
            IDs of the deleted jobs
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT id FROM jobs WHERE status = ? ORDER BY updated_at DESC, rowid DESC LIMIT -1 OFFSET ?",
                (status, max(keep, 0)),
            ).fetchall()
            stale = [row["id"] for row in rows]
            conn.executemany("DELETE FROM jobs WHERE id = ?", [(job_id,) for job_id in stale])
            return stale

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a job data dictionary."""
        events_raw = json.loads(row["events"] or "[]")
        events = [
            {
                "timestamp": _deserialize_datetime(e["timestamp"]),
                "message": e["message"],
            }
            for e in events_raw
        ]

        return {
            "id": row["id"],
            "status": row["status"],
            "progress": row["progress"],
            "content_text": row["content_text"],
            "mapping": json.loads(row["mapping"] or "{}"),
            "template_url": row["template_url"],
            "docx_location": row["docx_location"],
            "pdf_location": row["pdf_location"],
            "error": row["error"],
            "events": events,
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
        }

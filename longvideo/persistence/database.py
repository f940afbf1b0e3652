"""
SQLite Database Connection and Schema Management.
"""
import os
import sqlite3
import logging
from pathlib import Path
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "data/app.db"

_connection_lock = Lock()
_connection: Optional[sqlite3.Connection] = None


def get_database_path() -> str:
    """Get database path from environment or default."""
    return os.environ.get("DATABASE_PATH", DEFAULT_DATABASE_PATH)


def get_connection() -> sqlite3.Connection:
    """
    Get or create SQLite connection.
    Thread-safe singleton pattern.
    """
    global _connection

    with _connection_lock:
        if _connection is None:
            db_path = get_database_path()

            parent_dir = Path(db_path).parent
            parent_dir.mkdir(parents=True, exist_ok=True)

            _connection = sqlite3.connect(
                db_path,
                check_same_thread=False,
                isolation_level=None,
            )
            _connection.row_factory = sqlite3.Row

            _connection.execute("PRAGMA journal_mode=WAL")
            _connection.execute("PRAGMA busy_timeout=5000")

            logger.info(f"SQLite connection established: {db_path}")

            init_schema(_connection)

        return _connection


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Initialize database schema.
    Creates tables if they don't exist.
    """
    conn.executescript("""
        -- Long video task snapshots (full task serialized as JSON)
        CREATE TABLE IF NOT EXISTS long_video_tasks (
            task_id TEXT PRIMARY KEY,
            user_id TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            progress INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        -- Generation history mirror
        CREATE TABLE IF NOT EXISTS generation_history (
            task_id TEXT PRIMARY KEY,
            user_id TEXT,
            status TEXT NOT NULL,
            progress INTEGER NOT NULL DEFAULT 0,
            outputs_json TEXT,
            error TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            completed_at TEXT
        );

        -- Indexes for performance
        CREATE INDEX IF NOT EXISTS idx_long_video_tasks_user_id
            ON long_video_tasks(user_id);
        CREATE INDEX IF NOT EXISTS idx_long_video_tasks_status
            ON long_video_tasks(status);
        CREATE INDEX IF NOT EXISTS idx_long_video_tasks_created_at
            ON long_video_tasks(created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_generation_history_user_id
            ON generation_history(user_id);
    """)

    logger.info("Database schema initialized")


def close_connection() -> None:
    """Close database connection."""
    global _connection

    with _connection_lock:
        if _connection is not None:
            _connection.close()
            _connection = None
            logger.info("SQLite connection closed")

"""
Task repositories.

Orchestration depends only on TaskRepository. The in-memory implementation
backs tests and STORAGE_BACKEND=memory; the SQLite one stores one JSON
snapshot per task so state survives restarts.
"""
import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional

from .database import get_connection
from ..orchestration.enums import TaskStatus
from ..orchestration.models import Task, utcnow

logger = logging.getLogger(__name__)

UNFINISHED_STATUSES = tuple(s.value for s in TaskStatus if not s.is_terminal)


class TaskRepository(ABC):
    """CRUD over Task aggregates (segments and batches included)."""

    @abstractmethod
    def save(self, task: Task) -> None:
        pass

    @abstractmethod
    def get(self, task_id: str) -> Optional[Task]:
        pass

    @abstractmethod
    def list_tasks(self, user_id: Optional[str] = None) -> List[Task]:
        """Tasks newest first, optionally for one user."""
        pass

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        pass

    @abstractmethod
    def cleanup_expired(self, max_age: timedelta) -> int:
        """Delete tasks created before now - max_age. Returns the count."""
        pass

    @abstractmethod
    def list_unfinished(self) -> List[Task]:
        pass


class InMemoryTaskRepository(TaskRepository):
    """Stores deep copies so callers never share state with the store."""

    def __init__(self):
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def save(self, task: Task) -> None:
        with self._lock:
            self._tasks[task.id] = copy.deepcopy(task)

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def list_tasks(self, user_id: Optional[str] = None) -> List[Task]:
        with self._lock:
            tasks = [
                copy.deepcopy(t) for t in self._tasks.values()
                if user_id is None or t.user_id == user_id
            ]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def delete(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def cleanup_expired(self, max_age: timedelta) -> int:
        cutoff = utcnow() - max_age
        with self._lock:
            expired = [tid for tid, t in self._tasks.items() if t.created_at < cutoff]
            for task_id in expired:
                del self._tasks[task_id]
        return len(expired)

    def list_unfinished(self) -> List[Task]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._tasks.values() if not t.status.is_terminal]


class SQLiteTaskRepository(TaskRepository):
    """
    SQLite repository for long video tasks.
    The full aggregate is kept in `payload`; status/user/timestamps are
    duplicated into columns for queries.
    """

    def __init__(self):
        # Schema is created on first connection
        get_connection()

    def save(self, task: Task) -> None:
        conn = get_connection()
        payload = json.dumps(task.to_dict(), ensure_ascii=False)
        conn.execute("""
            INSERT INTO long_video_tasks (task_id, user_id, status, progress, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                user_id = excluded.user_id,
                status = excluded.status,
                progress = excluded.progress,
                payload = excluded.payload,
                updated_at = excluded.updated_at
        """, (
            task.id,
            task.user_id,
            task.status.value,
            task.progress,
            payload,
            task.created_at.isoformat(),
            task.updated_at.isoformat(),
        ))

    @staticmethod
    def _row_to_task(row) -> Task:
        return Task.from_dict(json.loads(row["payload"]))

    def get(self, task_id: str) -> Optional[Task]:
        conn = get_connection()
        cursor = conn.execute(
            "SELECT payload FROM long_video_tasks WHERE task_id = ?",
            (task_id,)
        )
        row = cursor.fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self, user_id: Optional[str] = None) -> List[Task]:
        conn = get_connection()
        if user_id is None:
            cursor = conn.execute(
                "SELECT payload FROM long_video_tasks ORDER BY created_at DESC"
            )
        else:
            cursor = conn.execute(
                "SELECT payload FROM long_video_tasks WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,)
            )
        return [self._row_to_task(row) for row in cursor.fetchall()]

    def delete(self, task_id: str) -> bool:
        conn = get_connection()
        cursor = conn.execute("DELETE FROM long_video_tasks WHERE task_id = ?", (task_id,))
        return cursor.rowcount > 0

    def cleanup_expired(self, max_age: timedelta) -> int:
        cutoff = (utcnow() - max_age).isoformat()
        conn = get_connection()
        cursor = conn.execute("DELETE FROM long_video_tasks WHERE created_at < ?", (cutoff,))
        if cursor.rowcount:
            logger.info(f"Cleaned up {cursor.rowcount} expired long video tasks")
        return cursor.rowcount

    def list_unfinished(self) -> List[Task]:
        conn = get_connection()
        placeholders = ",".join("?" for _ in UNFINISHED_STATUSES)
        cursor = conn.execute(
            f"SELECT payload FROM long_video_tasks WHERE status IN ({placeholders})",
            UNFINISHED_STATUSES,
        )
        return [self._row_to_task(row) for row in cursor.fetchall()]

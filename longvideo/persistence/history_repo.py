"""
Generation history sinks.

Mirror of task status for history views. Sinks may raise; the orchestrator
logs and ignores their failures.
"""
import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .database import get_connection
from ..orchestration.enums import TaskStatus
from ..orchestration.models import utcnow
from ..services.capabilities import HistorySink

logger = logging.getLogger(__name__)


@dataclass
class HistoryRecord:
    task_id: str
    status: str
    progress: int
    user_id: Optional[str] = None
    outputs: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


def _is_terminal(status: str) -> bool:
    return status in (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)


class InMemoryHistorySink(HistorySink):
    """Keeps the latest record per task plus every call in order."""

    def __init__(self):
        self.records: Dict[str, HistoryRecord] = {}
        self.calls: List[HistoryRecord] = []

    async def record_status(
        self,
        task_id: str,
        status: str,
        progress: int,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        now = utcnow().isoformat()
        previous = self.records.get(task_id)
        record = HistoryRecord(
            task_id=task_id,
            status=status,
            progress=progress,
            user_id=user_id or (previous.user_id if previous else None),
            outputs=outputs if outputs is not None else (previous.outputs if previous else None),
            error=error,
            updated_at=now,
            completed_at=now if _is_terminal(status) else None,
        )
        self.records[task_id] = record
        self.calls.append(record)

    def get(self, task_id: str) -> Optional[HistoryRecord]:
        return self.records.get(task_id)


class SQLiteHistorySink(HistorySink):
    """Upserts into generation_history; sets completed_at on terminal status."""

    def __init__(self):
        get_connection()

    async def record_status(
        self,
        task_id: str,
        status: str,
        progress: int,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        await asyncio.to_thread(self._upsert, task_id, status, progress, outputs, error, user_id)
        logger.debug(f"History {task_id}: {status} {progress}%")

    def _upsert(
        self,
        task_id: str,
        status: str,
        progress: int,
        outputs: Optional[Dict[str, Any]],
        error: Optional[str],
        user_id: Optional[str],
    ) -> None:
        conn = get_connection()
        now = utcnow().isoformat()
        outputs_json = json.dumps(outputs, ensure_ascii=False) if outputs is not None else None
        completed_at = now if _is_terminal(status) else None

        conn.execute("""
            INSERT INTO generation_history (
                task_id, user_id, status, progress, outputs_json, error,
                created_at, updated_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                user_id = COALESCE(excluded.user_id, generation_history.user_id),
                status = excluded.status,
                progress = excluded.progress,
                outputs_json = COALESCE(excluded.outputs_json, generation_history.outputs_json),
                error = excluded.error,
                updated_at = excluded.updated_at,
                completed_at = excluded.completed_at
        """, (task_id, user_id, status, progress, outputs_json, error, now, now, completed_at))

    def get(self, task_id: str) -> Optional[HistoryRecord]:
        conn = get_connection()
        cursor = conn.execute(
            "SELECT * FROM generation_history WHERE task_id = ?",
            (task_id,)
        )
        row = cursor.fetchone()
        if not row:
            return None
        return HistoryRecord(
            task_id=row["task_id"],
            status=row["status"],
            progress=row["progress"],
            user_id=row["user_id"],
            outputs=json.loads(row["outputs_json"]) if row["outputs_json"] else None,
            error=row["error"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

"""
Persistence Module.
Provides SQLite-backed (or in-memory) storage for long video tasks and
generation history.
"""
import os
import logging

from .database import get_connection, close_connection, init_schema
from .tasks_repo import TaskRepository, InMemoryTaskRepository, SQLiteTaskRepository
from .history_repo import HistoryRecord, InMemoryHistorySink, SQLiteHistorySink

logger = logging.getLogger(__name__)

STORAGE_BACKEND_ENV = "STORAGE_BACKEND"
STORAGE_BACKEND_SQLITE = "sqlite"
STORAGE_BACKEND_MEMORY = "memory"


def get_storage_backend() -> str:
    """Get storage backend from environment."""
    backend = os.environ.get(STORAGE_BACKEND_ENV, STORAGE_BACKEND_SQLITE)
    return backend.lower()


def is_sqlite_backend() -> bool:
    """Check if using SQLite backend."""
    return get_storage_backend() == STORAGE_BACKEND_SQLITE


def create_task_repository() -> TaskRepository:
    if is_sqlite_backend():
        return SQLiteTaskRepository()
    logger.info("Using in-memory task repository")
    return InMemoryTaskRepository()


def create_history_sink():
    if is_sqlite_backend():
        return SQLiteHistorySink()
    return InMemoryHistorySink()


__all__ = [
    "get_connection",
    "close_connection",
    "init_schema",
    "TaskRepository",
    "InMemoryTaskRepository",
    "SQLiteTaskRepository",
    "HistoryRecord",
    "InMemoryHistorySink",
    "SQLiteHistorySink",
    "create_task_repository",
    "create_history_sink",
    "get_storage_backend",
    "is_sqlite_backend",
    "STORAGE_BACKEND_SQLITE",
    "STORAGE_BACKEND_MEMORY",
]

"""
Key-Value Persistence for the Task Sequence

Provides the storage capability injected into TaskStore: an in-memory
backend for tests and a SQLite-backed blob store (WAL mode) for the server
and CLI. The task sequence lives under a single key as a JSON array, the
theme preference under a second key.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .models import RecordFlags, Task

logger = logging.getLogger(__name__)

TASKS_KEY = "my-tasks"
THEME_KEY = "app-theme"


class KeyValueStorage(ABC):
    """Minimal string key-value capability used by the store and theme preference."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Stored value for ``key``, or None when unset."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    def close(self) -> None:
        """Release backend resources; a no-op by default."""


class MemoryStorage(KeyValueStorage):
    """Dictionary-backed storage, the default when no backend is injected."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class SqliteStorage(KeyValueStorage):
    """
    SQLite key-value blob store.

    Features:
    - WAL mode so the API server and CLI can share one file
    - Single autocommit connection guarded by a reentrant lock
    - Last write wins; no versioning or migration of stored values
    """

    def __init__(self, db_path: str):
        """
        Open (creating if needed) the SQLite file.

        Args:
            db_path: Path to SQLite database file

        Raises:
            RuntimeError: If the database cannot be initialized
        """
        self.db_path = Path(db_path)
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self) -> None:
        try:
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,  # Autocommit mode
                check_same_thread=False,  # FastAPI runs sync dependencies on worker threads
            )
            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def get(self, key: str) -> Optional[str]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )

    def close(self):
        """Close database connection."""
        with self._connection_lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def dump_tasks(tasks: Sequence[Task]) -> str:
    """Serialize the sequence to its persisted JSON array form."""
    return json.dumps([task.to_record() for task in tasks])


def parse_tasks(raw: Optional[str]) -> List[Task]:
    """
    Parse a persisted JSON array back into tasks.

    Anything unreadable degrades to an empty or shortened list with a
    warning; nothing raises. Subtask records written without ``parentId``
    are attached to the closest preceding parent, or promoted to parents
    when none precedes them.
    """
    if not raw:
        return []
    try:
        records = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Stored task list is not valid JSON, starting empty: {e}")
        return []
    if not isinstance(records, list):
        logger.warning(f"Stored task list is a {type(records).__name__}, expected a list; starting empty")
        return []

    tasks: List[Task] = []
    last_parent_id: Optional[int] = None
    for position, record in enumerate(records):
        try:
            if _needs_parent_repair(record):
                record = _repair_subtask_record(record, last_parent_id)
            task = Task.from_record(record)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Skipping unreadable task record at position {position}: {e}")
            continue
        if task.is_parent:
            last_parent_id = task.id
        tasks.append(task)
    return tasks


def _needs_parent_repair(record: Any) -> bool:
    return (isinstance(record, dict) and record.get("parentId") is None
            and RecordFlags.from_record(record).is_subtask)


def _repair_subtask_record(record: Dict[str, Any], parent_id: Optional[int]) -> Dict[str, Any]:
    repaired = dict(record)
    if parent_id is None:
        logger.warning(f"Subtask {record.get('id')} has no parent before it; loading it as a parent task")
        repaired["isSubtask"] = False
        repaired["isParent"] = True
    else:
        logger.info(f"Attaching legacy subtask {record.get('id')} to preceding parent {parent_id}")
        repaired["parentId"] = parent_id
    return repaired


def load_tasks(storage: KeyValueStorage) -> List[Task]:
    """Read the task sequence from storage; a missing key is an empty list."""
    return parse_tasks(storage.get(TASKS_KEY))


def save_tasks(storage: KeyValueStorage, tasks: Sequence[Task]) -> None:
    """Write the whole task sequence under the tasks key."""
    storage.set(TASKS_KEY, dump_tasks(tasks))

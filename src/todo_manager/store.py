"""
Task Store with Write-Through Persistence

Holds the ordered task sequence and exposes the mutation operations used by
the dashboard API, the CLI and the AI expansion flow. Every mutation that
changes the sequence is written back wholesale to the injected key-value
storage before the call returns.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .models import Task, TaskRole
from .reconcile import (
    Family,
    apply_toggle,
    families,
    find_violations,
    index_of,
    insert_after_family,
    move_task,
    recompute_parent,
    remove_family,
)
from .storage import KeyValueStorage, MemoryStorage, load_tasks, save_tasks

logger = logging.getLogger(__name__)


class TaskStore:
    """
    Ordered task sequence with parent/subtask cascades.

    Features:
    - Write-through persistence after every effective mutation
    - Millisecond-clock ids forced strictly increasing, so batches never collide
    - Not-found ids and blank text are silent no-ops
    - Reentrant lock so API worker threads never interleave mutations
    """

    def __init__(self, storage: Optional[KeyValueStorage] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Initialize the store and load the persisted sequence.

        Args:
            storage: Key-value backend, defaults to an in-memory one
            clock: Seconds-since-epoch source used for ids and timestamps
        """
        self.storage = storage if storage is not None else MemoryStorage()
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._tasks: List[Task] = []
        self._last_id = 0
        self.reload()

    # -------------------- loading / ids --------------------
    def reload(self) -> None:
        """Replace the in-memory sequence with whatever storage currently holds."""
        with self._lock:
            self._tasks = load_tasks(self.storage)
            self._last_id = max((t.id for t in self._tasks), default=0)
            for problem in find_violations(self._tasks):
                logger.warning(f"Loaded task list: {problem}")
            logger.info(f"Loaded {len(self._tasks)} tasks")

    def _allocate_id(self) -> int:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return candidate

    def _now_iso(self) -> str:
        stamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _new_task(self, text: str, parent_id: Optional[int] = None, completed: bool = False) -> Task:
        return Task(
            id=self._allocate_id(),
            text=text,
            completed=completed,
            role=TaskRole.SUBTASK if parent_id is not None else TaskRole.PARENT,
            parent_id=parent_id,
            created_at=self._now_iso(),
        )

    def _commit(self, tasks: List[Task], action: str) -> None:
        self._tasks = tasks
        save_tasks(self.storage, tasks)
        logger.debug(f"Persisted {len(tasks)} tasks after {action}")

    # -------------------- queries --------------------
    @property
    def tasks(self) -> List[Task]:
        """Copy of the current ordered sequence."""
        with self._lock:
            return list(self._tasks)

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._lock:
            idx = index_of(self._tasks, task_id)
            return self._tasks[idx] if idx != -1 else None

    def families(self) -> List[Family]:
        """Parent-owns-children view of the current sequence."""
        with self._lock:
            return families(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    # -------------------- task operations --------------------
    def add_task(self, text: str) -> Optional[Task]:
        """
        Add a parent-role task at the head of the sequence.

        Returns:
            The new task, or None when ``text`` is blank
        """
        if not text or not text.strip():
            return None
        with self._lock:
            task = self._new_task(text)
            self._commit([task] + self._tasks, "add_task")
        logger.info(f"Added task {task.id}")
        return task

    def add_subtask(self, parent_id: int) -> Optional[Task]:
        """
        Add one empty-text subtask after the parent's existing subtasks.

        Returns:
            The new subtask, or None when the parent is missing or is itself a subtask
        """
        with self._lock:
            parent = self.get_task(parent_id)
            if parent is None or not parent.is_parent:
                logger.debug(f"add_subtask ignored: {parent_id} is not a parent task")
                return None
            subtask = self._new_task("", parent_id=parent_id)
            updated = insert_after_family(self._tasks, parent_id, [subtask])
            self._commit(recompute_parent(updated, parent_id), "add_subtask")
        logger.info(f"Added subtask {subtask.id} to task {parent_id}")
        return subtask

    def insert_subtasks(self, parent_id: int, texts: Sequence[str]) -> List[Task]:
        """
        Insert a batch of subtasks after the parent's family in one commit.

        Returns an empty list when ``texts`` is empty or the parent no longer
        exists, so a late batch never resurrects a deleted parent.
        """
        if not texts:
            return []
        with self._lock:
            parent = self.get_task(parent_id)
            if parent is None or not parent.is_parent:
                logger.info(f"Discarding {len(texts)} subtasks for missing parent {parent_id}")
                return []
            subtasks = [self._new_task(text, parent_id=parent_id) for text in texts]
            updated = insert_after_family(self._tasks, parent_id, subtasks)
            self._commit(recompute_parent(updated, parent_id), "insert_subtasks")
        logger.info(f"Inserted {len(subtasks)} subtasks under task {parent_id}")
        return subtasks

    def add_family(self, text: str, subtasks: Sequence[Tuple[str, bool]] = (),
                   completed: bool = False) -> Optional[Tuple[Task, List[Task]]]:
        """
        Add a parent and its subtasks at the head of the sequence atomically.

        Args:
            text: Parent label
            subtasks: (text, completed) pairs in display order
            completed: Parent completion, only used when there are no subtasks

        Returns:
            (parent, subtasks), or None when ``text`` is blank
        """
        if not text or not text.strip():
            return None
        with self._lock:
            parent = self._new_task(text, completed=completed)
            children = [self._new_task(sub_text, parent_id=parent.id, completed=sub_done)
                        for sub_text, sub_done in subtasks]
            updated = recompute_parent([parent] + children + self._tasks, parent.id)
            self._commit(updated, "add_family")
            parent = updated[0]
        logger.info(f"Added task {parent.id} with {len(children)} subtasks")
        return parent, children

    def edit_task(self, task_id: int, text: str) -> bool:
        """Replace a task's text; False when the id is unknown."""
        with self._lock:
            idx = index_of(self._tasks, task_id)
            if idx == -1:
                return False
            updated = list(self._tasks)
            updated[idx] = updated[idx].model_copy(update={"text": text})
            self._commit(updated, "edit_task")
        logger.info(f"Edited task {task_id}")
        return True

    def toggle_task(self, task_id: int) -> bool:
        """Flip completion and cascade; False when the id is unknown."""
        with self._lock:
            if index_of(self._tasks, task_id) == -1:
                return False
            self._commit(apply_toggle(self._tasks, task_id), "toggle_task")
        logger.info(f"Toggled task {task_id}")
        return True

    def delete_task(self, task_id: int) -> List[int]:
        """
        Delete a task together with its subtasks.

        Returns:
            Ids removed, in sequence order; empty when the id is unknown
        """
        with self._lock:
            target = self.get_task(task_id)
            if target is None:
                return []
            updated = remove_family(self._tasks, task_id)
            if target.is_subtask:
                updated = recompute_parent(updated, target.parent_id)
            remaining = {t.id for t in updated}
            removed = [t.id for t in self._tasks if t.id not in remaining]
            self._commit(updated, "delete_task")
        logger.info(f"Deleted task {task_id} ({len(removed)} records)")
        return removed

    def reorder(self, active_id: int, over_id: Optional[int]) -> bool:
        """
        Commit a drag-and-drop move.

        Returns:
            True when the order changed; no-op drops are not persisted
        """
        with self._lock:
            updated = move_task(self._tasks, active_id, over_id)
            if [t.id for t in updated] == [t.id for t in self._tasks]:
                return False
            self._commit(updated, "reorder")
        logger.info(f"Moved task {active_id} onto {over_id}")
        return True

"""
Ordered Task-List Reconciliation

Pure transformations over the flat, ordered task sequence that keep the
two-level parent/subtask hierarchy consistent:

- completion cascade (down to subtasks, then bubble up to parents)
- family deletion
- drag-and-drop reordering that moves a parent together with its subtasks
  and never drops a block inside another family
- insertion after a parent's existing subtask block

None of these functions mutate their input; each returns a new list.
"""

from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from .models import Task


class Family(NamedTuple):
    """A parent task and its subtasks in sequence order."""

    parent: Task
    subtasks: List[Task]


def index_of(tasks: Sequence[Task], task_id: int) -> int:
    """Position of ``task_id`` in the sequence, or -1 when absent."""
    for idx, task in enumerate(tasks):
        if task.id == task_id:
            return idx
    return -1


def subtasks_of(tasks: Sequence[Task], parent_id: int) -> List[Task]:
    """All subtasks referencing ``parent_id``, in sequence order."""
    return [t for t in tasks if t.is_subtask and t.parent_id == parent_id]


def family_end(tasks: Sequence[Task], parent_id: int) -> int:
    """
    Index one past the parent's last contiguous subtask.

    Returns -1 when the parent is not in the sequence.
    """
    idx = index_of(tasks, parent_id)
    if idx == -1:
        return -1
    end = idx + 1
    while end < len(tasks) and tasks[end].is_subtask and tasks[end].parent_id == parent_id:
        end += 1
    return end


def insert_after_family(tasks: Sequence[Task], parent_id: int, new_tasks: Iterable[Task]) -> List[Task]:
    """
    Insert ``new_tasks`` after the parent's existing subtask block.

    New subtasks therefore land after their siblings rather than between the
    parent and its first child. The sequence is returned unchanged when the
    parent is missing.
    """
    end = family_end(tasks, parent_id)
    if end == -1:
        return list(tasks)
    return list(tasks[:end]) + list(new_tasks) + list(tasks[end:])


def cascade_down(tasks: Sequence[Task], parent_id: int, completed: bool) -> List[Task]:
    """Force every subtask of ``parent_id`` to ``completed``."""
    return [
        t.model_copy(update={"completed": completed})
        if t.is_subtask and t.parent_id == parent_id and t.completed != completed
        else t
        for t in tasks
    ]


def _subtask_completion(tasks: Sequence[Task]) -> Dict[int, bool]:
    """Map of parent id -> AND over its subtasks' completion, for parents with subtasks."""
    status: Dict[int, bool] = {}
    for task in tasks:
        if task.is_subtask:
            status[task.parent_id] = status.get(task.parent_id, True) and task.completed
    return status


def recompute_parent(tasks: Sequence[Task], parent_id: int) -> List[Task]:
    """
    Recompute one parent's completion from its subtasks.

    A parent without subtasks keeps whatever value it currently holds.
    """
    return bubble_up(tasks, parent_order=[parent_id])


def bubble_up(tasks: Sequence[Task], parent_order: Optional[Iterable[int]] = None) -> List[Task]:
    """
    Recompute every parent's completion as the AND of its subtasks.

    Each parent depends only on its own subtasks, which this phase never
    touches, so any ``parent_order`` yields the same result.

    Args:
        tasks: Current sequence
        parent_order: Parent ids to visit, defaults to sequence order

    Returns:
        New sequence with parent completion flags brought in line
    """
    status = _subtask_completion(tasks)
    result = list(tasks)
    positions = {t.id: i for i, t in enumerate(result)}
    order = parent_order if parent_order is not None else [t.id for t in result if t.is_parent]

    for parent_id in order:
        if parent_id not in status:
            continue
        idx = positions.get(parent_id)
        if idx is None or not result[idx].is_parent:
            continue
        if result[idx].completed != status[parent_id]:
            result[idx] = result[idx].model_copy(update={"completed": status[parent_id]})
    return result


def apply_toggle(tasks: Sequence[Task], task_id: int) -> List[Task]:
    """
    Flip ``completed`` on one task and run the completion cascade.

    Phase 1 pushes a parent's new value down to its subtasks; phase 2
    recomputes every parent that has subtasks from those subtasks. Missing
    ids leave the sequence unchanged.
    """
    idx = index_of(tasks, task_id)
    if idx == -1:
        return list(tasks)

    target = tasks[idx]
    new_value = not target.completed
    result = list(tasks)
    result[idx] = target.model_copy(update={"completed": new_value})

    if target.is_parent:
        result = cascade_down(result, target.id, new_value)
    return bubble_up(result)


def remove_family(tasks: Sequence[Task], task_id: int) -> List[Task]:
    """Drop the task and every task whose ``parent_id`` is ``task_id`` in one pass."""
    return [t for t in tasks if t.id != task_id and t.parent_id != task_id]


def _array_move(tasks: Sequence[Task], from_index: int, to_index: int) -> List[Task]:
    result = list(tasks)
    result.insert(to_index, result.pop(from_index))
    return result


def _skip_family_members(remainder: Sequence[Task], insert_at: int) -> int:
    # Subtasks at the insertion point belong to the family that precedes it.
    while insert_at < len(remainder) and remainder[insert_at].is_subtask:
        insert_at += 1
    return insert_at


def move_task(tasks: Sequence[Task], active_id: int, over_id: Optional[int]) -> List[Task]:
    """
    Commit a drag-and-drop move of ``active_id`` onto ``over_id``.

    Subtasks move as single elements, and only onto a sibling. Parent and
    standalone tasks move together with all of their subtasks as one block.
    The block lands where ``over_id`` sat in the direction of travel. If that
    point falls inside another family, it is pushed past the end of that
    family's subtasks.

    Dropping onto itself, onto an unknown id, outside any target, or onto
    one of its own subtasks returns the sequence unchanged.

    Args:
        tasks: Current sequence
        active_id: Id of the dragged task
        over_id: Id of the drop target, None when dropped outside

    Returns:
        New sequence
    """
    if over_id is None or over_id == active_id:
        return list(tasks)

    active_idx = index_of(tasks, active_id)
    over_idx = index_of(tasks, over_id)
    if active_idx == -1 or over_idx == -1:
        return list(tasks)

    active = tasks[active_idx]
    if active.is_subtask:
        over = tasks[over_idx]
        if not (over.is_subtask and over.parent_id == active.parent_id):
            return list(tasks)
        return _array_move(tasks, active_idx, over_idx)

    block = [active] + subtasks_of(tasks, active_id)
    block_ids = {t.id for t in block}
    if over_id in block_ids:
        return list(tasks)

    remainder = [t for t in tasks if t.id not in block_ids]
    insert_at = index_of(remainder, over_id)
    if active_idx < over_idx:
        insert_at += 1
    insert_at = _skip_family_members(remainder, insert_at)

    return remainder[:insert_at] + block + remainder[insert_at:]


def families(tasks: Sequence[Task]) -> List[Family]:
    """
    Parent-owns-children view of the sequence.

    Subtasks whose parent is missing are left out; ``find_violations``
    reports them.
    """
    grouped: Dict[int, Family] = {}
    ordered: List[Family] = []
    for task in tasks:
        if task.is_parent:
            family = Family(task, [])
            grouped[task.id] = family
            ordered.append(family)
    for task in tasks:
        if task.is_subtask and task.parent_id in grouped:
            grouped[task.parent_id].subtasks.append(task)
    return ordered


def flatten(family_list: Iterable[Family]) -> List[Task]:
    """Inverse of ``families``: parent followed by its subtasks, family by family."""
    result: List[Task] = []
    for family in family_list:
        result.append(family.parent)
        result.extend(family.subtasks)
    return result


def find_violations(tasks: Sequence[Task]) -> List[str]:
    """Describe every id clash, dangling parent reference and split family in the sequence."""
    problems: List[str] = []
    positions: Dict[int, int] = {}
    for idx, task in enumerate(tasks):
        if task.id in positions:
            problems.append(f"Duplicate task id {task.id} at positions {positions[task.id]} and {idx}")
        else:
            positions[task.id] = idx

    for idx, task in enumerate(tasks):
        if not task.is_subtask:
            continue
        parent_idx = positions.get(task.parent_id)
        if parent_idx is None:
            problems.append(f"Subtask {task.id} references missing parent {task.parent_id}")
        elif not tasks[parent_idx].is_parent:
            problems.append(f"Subtask {task.id} references subtask {task.parent_id} as its parent")
        elif parent_idx > idx:
            problems.append(f"Subtask {task.id} appears before its parent {task.parent_id}")

    for family in families(tasks):
        start = positions[family.parent.id]
        expected = [t.id for t in tasks[start + 1:start + 1 + len(family.subtasks)]]
        if expected != [t.id for t in family.subtasks]:
            problems.append(f"Family of task {family.parent.id} is not contiguous")
    return problems

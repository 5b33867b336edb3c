"""
YAML Task Importer

Bulk-loads task families from YAML and exports the current list in the same
shape. Each family is added atomically; a malformed entry is recorded in the
import statistics and does not stop the rest of the file.

Document shape::

    tasks:
      - Water the plants
      - text: Plan trip
        subtasks:
          - Book flights
          - text: Reserve hotel
            completed: true
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml

from .store import TaskStore

logger = logging.getLogger(__name__)


def _parse_entry(entry: Any, kind: str) -> Tuple[str, bool]:
    if isinstance(entry, str):
        text, completed = entry, False
    elif isinstance(entry, dict):
        text = entry.get("text")
        completed = entry.get("completed", False)
        if not isinstance(completed, bool):
            raise ValueError(f"{kind} 'completed' must be true or false")
    else:
        raise ValueError(f"{kind} must be a string or a mapping, got {type(entry).__name__}")

    if not isinstance(text, str) or not text.strip():
        raise ValueError(f"{kind} text must be a non-empty string")
    return text.strip(), completed


def import_tasks(store: TaskStore, yaml_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Import task families from parsed YAML.

    Families keep their file order and are placed ahead of existing tasks.

    Args:
        store: Destination task store
        yaml_data: Parsed YAML document

    Returns:
        Dict with tasks_created, subtasks_created and errors

    Raises:
        ValueError: If the document or its 'tasks' entry has the wrong type
    """
    if not isinstance(yaml_data, dict):
        raise ValueError("YAML document must be a mapping with a 'tasks' list")
    entries = yaml_data.get("tasks", [])
    if not isinstance(entries, list):
        raise ValueError("YAML 'tasks' must be a list")

    stats: Dict[str, Any] = {"tasks_created": 0, "subtasks_created": 0, "errors": []}

    # Reversed so that head insertion leaves families in file order.
    for position in reversed(range(len(entries))):
        entry = entries[position]
        try:
            text, completed = _parse_entry(entry, "Task")
            raw_subtasks = entry.get("subtasks", []) if isinstance(entry, dict) else []
            if not isinstance(raw_subtasks, list):
                raise ValueError("'subtasks' must be a list")
            subtasks = [_parse_entry(sub, "Subtask") for sub in raw_subtasks]

            _, children = store.add_family(text, subtasks, completed=completed)
            stats["tasks_created"] += 1
            stats["subtasks_created"] += len(children)
        except ValueError as e:
            stats["errors"].append(f"Task #{position + 1}: {e}")

    stats["errors"].reverse()
    logger.info(
        f"Imported {stats['tasks_created']} tasks and {stats['subtasks_created']} subtasks "
        f"({len(stats['errors'])} errors)"
    )
    return stats


def import_tasks_from_file(store: TaskStore, file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Import task families from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid YAML or has the wrong shape
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML format: {e}")
    return import_tasks(store, yaml_data)


def export_tasks(store: TaskStore) -> Dict[str, List[Dict[str, Any]]]:
    """Current task list as an importable document; blank (still being composed) tasks are left out."""
    exported: List[Dict[str, Any]] = []
    for family in store.families():
        if not family.parent.text.strip():
            continue
        item: Dict[str, Any] = {"text": family.parent.text, "completed": family.parent.completed}
        subtasks = [{"text": sub.text, "completed": sub.completed}
                    for sub in family.subtasks if sub.text.strip()]
        if subtasks:
            item["subtasks"] = subtasks
        exported.append(item)
    return {"tasks": exported}

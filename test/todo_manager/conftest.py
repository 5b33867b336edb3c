"""
Shared fixtures for the To-Do Manager test suite.

Provides a deterministic clock, in-memory and SQLite storage, stores seeded
with the reference parent/subtask scenario, and a TestClient whose
dependencies are wired to those fixtures instead of the lifespan handler.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from todo_manager import api
from todo_manager.expansion import ExpansionGuard, SubtaskGenerator
from todo_manager.models import Task, TaskRole
from todo_manager.storage import TASKS_KEY, MemoryStorage, SqliteStorage, dump_tasks
from todo_manager.store import TaskStore
from todo_manager.theme import ThemePreference

CREATED_AT = "2026-01-15T09:30:00.000Z"
FIXED_EPOCH = 1_700_000_000.0


def make_parent(task_id, text=None, completed=False):
    return Task(id=task_id, text=text or f"Task {task_id}", completed=completed, created_at=CREATED_AT)


def make_subtask(task_id, parent_id, text=None, completed=False):
    return Task(
        id=task_id,
        text=text or f"Subtask {task_id}",
        completed=completed,
        role=TaskRole.SUBTASK,
        parent_id=parent_id,
        created_at=CREATED_AT,
    )


@pytest.fixture
def scenario_tasks():
    """[Parent A(1), Sub A1(2), Sub A2(3), Parent B(4)]"""
    return [
        make_parent(1, "Parent A"),
        make_subtask(2, 1, "Sub A1"),
        make_subtask(3, 1, "Sub A2"),
        make_parent(4, "Parent B"),
    ]


@pytest.fixture
def clock():
    return lambda: FIXED_EPOCH


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, clock):
    return TaskStore(storage, clock=clock)


@pytest.fixture
def scenario_storage(scenario_tasks):
    return MemoryStorage({TASKS_KEY: dump_tasks(scenario_tasks)})


@pytest.fixture
def scenario_store(scenario_storage, clock):
    return TaskStore(scenario_storage, clock=clock)


@pytest.fixture
def sqlite_storage(tmp_path):
    storage = SqliteStorage(str(tmp_path / "todo.db"))
    yield storage
    storage.close()


@pytest.fixture
def generator():
    mock_generator = Mock(spec=SubtaskGenerator)
    mock_generator.generate_subtasks.return_value = ["Draft outline", "Write body", "Proofread"]
    return mock_generator


@pytest.fixture
def guard():
    return ExpansionGuard()


@pytest.fixture
def client(scenario_store, scenario_storage, generator, guard):
    """TestClient bound to the scenario store; lifespan is not run."""
    theme = ThemePreference(scenario_storage)
    api.app.dependency_overrides[api.get_store] = lambda: scenario_store
    api.app.dependency_overrides[api.get_theme] = lambda: theme
    api.app.dependency_overrides[api.get_generator] = lambda: generator
    api.app.dependency_overrides[api.get_expansion_guard] = lambda: guard
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()

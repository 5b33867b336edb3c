"""
Tests for TaskStore operations and write-through persistence.
"""

import json

from todo_manager.storage import TASKS_KEY, MemoryStorage, load_tasks
from todo_manager.store import TaskStore

from conftest import CREATED_AT


def ids(tasks):
    return [t.id for t in tasks]


def persisted_ids(storage):
    return [record["id"] for record in json.loads(storage.get(TASKS_KEY))]


class TestAddTask:
    """Head insertion and blank-text rejection."""

    def test_add_task_inserts_at_head_and_persists(self, store, storage):
        first = store.add_task("Write report")
        second = store.add_task("Call plumber")

        assert [t.text for t in store.tasks] == ["Call plumber", "Write report"]
        assert persisted_ids(storage) == [second.id, first.id]
        assert first.is_parent and not first.completed

    def test_blank_text_is_ignored(self, store, storage):
        assert store.add_task("") is None
        assert store.add_task("   ") is None
        assert store.tasks == []
        assert storage.get(TASKS_KEY) is None

    def test_ids_strictly_increase_with_frozen_clock(self, store):
        created = [store.add_task(f"task {i}") for i in range(5)]
        assert [t.id for t in created] == sorted({t.id for t in created})
        assert created[0].id == 1_700_000_000_000

    def test_created_at_comes_from_clock(self, store):
        task = store.add_task("stamped")
        assert task.created_at == "2023-11-14T22:13:20.000Z"


class TestSubtasks:
    """add_subtask and batch insertion."""

    def test_add_subtask_goes_after_existing_siblings(self, scenario_store):
        created = scenario_store.add_subtask(1)
        assert ids(scenario_store.tasks) == [1, 2, 3, created.id, 4]
        assert created.text == ""
        assert created.parent_id == 1

    def test_add_subtask_to_subtask_or_unknown_is_ignored(self, scenario_store):
        assert scenario_store.add_subtask(2) is None
        assert scenario_store.add_subtask(999) is None
        assert ids(scenario_store.tasks) == [1, 2, 3, 4]

    def test_add_subtask_reopens_completed_parent(self, scenario_store):
        scenario_store.toggle_task(4)
        assert scenario_store.get_task(4).completed is True
        scenario_store.add_subtask(4)
        assert scenario_store.get_task(4).completed is False

    def test_insert_subtasks_batch(self, store):
        parent = store.add_task("Plan trip")
        subtasks = store.insert_subtasks(parent.id, ["Book flights", "Reserve hotel"])
        assert [t.text for t in store.tasks] == ["Plan trip", "Book flights", "Reserve hotel"]
        assert all(t.parent_id == parent.id for t in subtasks)

    def test_insert_subtasks_for_missing_parent_is_discarded(self, scenario_store):
        assert scenario_store.insert_subtasks(999, ["late"]) == []
        assert scenario_store.insert_subtasks(1, []) == []
        assert ids(scenario_store.tasks) == [1, 2, 3, 4]

    def test_add_family_derives_parent_completion(self, store):
        parent, children = store.add_family("Clean house", [("Kitchen", True), ("Bathroom", True)])
        assert parent.completed is True
        assert [c.text for c in children] == ["Kitchen", "Bathroom"]
        assert ids(store.tasks) == [parent.id] + ids(children)

    def test_add_family_without_subtasks_keeps_flag(self, store):
        parent, children = store.add_family("Already done", [], completed=True)
        assert parent.completed is True
        assert children == []

    def test_add_family_blank_text(self, store):
        assert store.add_family(" ", [("x", False)]) is None


class TestMutations:
    """edit, toggle, delete and reorder through the store."""

    def test_edit_task(self, scenario_store, scenario_storage):
        assert scenario_store.edit_task(2, "Sub A1 renamed") is True
        assert scenario_store.get_task(2).text == "Sub A1 renamed"
        assert load_tasks(scenario_storage)[1].text == "Sub A1 renamed"

    def test_edit_unknown_is_noop(self, scenario_store):
        assert scenario_store.edit_task(999, "nothing") is False

    def test_reference_scenario_persists(self, scenario_store, scenario_storage, clock):
        scenario_store.toggle_task(2)
        scenario_store.toggle_task(3)

        reloaded = TaskStore(scenario_storage, clock=clock)
        assert reloaded.get_task(1).completed is True
        assert reloaded.get_task(4).completed is False

        assert reloaded.delete_task(1) == [1, 2, 3]
        assert ids(reloaded.tasks) == [4]
        assert persisted_ids(scenario_storage) == [4]

    def test_toggle_unknown(self, scenario_store):
        assert scenario_store.toggle_task(999) is False

    def test_delete_unknown(self, scenario_store):
        assert scenario_store.delete_task(999) == []

    def test_deleting_last_open_subtask_completes_parent(self, scenario_store):
        scenario_store.toggle_task(2)
        assert scenario_store.get_task(1).completed is False
        assert scenario_store.delete_task(3) == [3]
        assert scenario_store.get_task(1).completed is True

    def test_reorder_persists_change(self, scenario_store, scenario_storage):
        assert scenario_store.reorder(4, 1) is True
        assert persisted_ids(scenario_storage) == [4, 1, 2, 3]

    def test_noop_reorder_is_not_written(self, scenario_store, scenario_storage):
        before = scenario_storage.get(TASKS_KEY)
        assert scenario_store.reorder(4, 2) is False
        assert scenario_store.reorder(1, None) is False
        assert scenario_storage.get(TASKS_KEY) is before


class TestLoading:
    """Load and reload from storage."""

    def test_round_trip_through_storage(self, scenario_store, scenario_storage, clock):
        scenario_store.toggle_task(3)
        scenario_store.add_subtask(4)
        reloaded = TaskStore(scenario_storage, clock=clock)
        assert reloaded.tasks == scenario_store.tasks

    def test_reload_picks_up_external_writes(self, scenario_store, scenario_storage):
        scenario_storage.set(TASKS_KEY, "[]")
        scenario_store.reload()
        assert scenario_store.tasks == []

    def test_legacy_subtasks_attach_to_preceding_parent(self, clock):
        legacy = [
            {"id": 10, "text": "Plan trip", "completed": False, "isParent": True, "createdAt": CREATED_AT},
            {"id": 11, "text": "Book flights", "completed": False, "isSubtask": True, "createdAt": CREATED_AT},
            {"id": 12, "text": "Pack", "completed": False, "isSubtask": True, "createdAt": CREATED_AT},
            {"id": 20, "text": "Plain task", "completed": True, "createdAt": CREATED_AT},
        ]
        store = TaskStore(MemoryStorage({TASKS_KEY: json.dumps(legacy)}), clock=clock)
        assert [t.parent_id for t in store.tasks] == [None, 10, 10, None]
        assert [f.parent.id for f in store.families()] == [10, 20]

    def test_new_ids_follow_loaded_ids(self, clock):
        future_id = 9_999_999_999_999
        records = [{"id": future_id, "text": "from the future", "completed": False, "createdAt": CREATED_AT}]
        store = TaskStore(MemoryStorage({TASKS_KEY: json.dumps(records)}), clock=clock)
        assert store.add_task("next").id == future_id + 1

    def test_default_storage_is_memory(self):
        store = TaskStore()
        store.add_task("in memory")
        assert len(store) == 1
        assert isinstance(store.storage, MemoryStorage)

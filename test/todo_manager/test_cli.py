"""
Test Suite for the Click CLI

Runs commands against a temporary SQLite file and inspects the stored task
list directly afterwards. The Gemini generator is patched out.
"""

from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from todo_manager.cli import main, render_tasks
from todo_manager.expansion import SubtaskGenerationError
from todo_manager.storage import SqliteStorage, save_tasks
from todo_manager.store import TaskStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def seeded_db(db_path, scenario_tasks):
    with SqliteStorage(db_path) as storage:
        save_tasks(storage, scenario_tasks)
    return db_path


def stored_tasks(db_path):
    with SqliteStorage(db_path) as storage:
        return TaskStore(storage).tasks


def run(runner, db_path, *args):
    result = runner.invoke(main, ["--db", db_path, *args])
    assert result.exit_code == 0, result.output
    return result


class TestTaskCommands:

    def test_add_and_list(self, runner, db_path):
        run(runner, db_path, "add", "Write", "report")
        run(runner, db_path, "add", "Call", "plumber")

        result = run(runner, db_path, "list")
        lines = result.output.strip().splitlines()
        assert lines[0].endswith("Call plumber")
        assert lines[1].endswith("Write report")
        assert all(line.startswith("[ ]") for line in lines)

    def test_blank_add_is_silent(self, runner, db_path):
        result = run(runner, db_path, "add", "  ")
        assert result.output == ""
        assert stored_tasks(db_path) == []

    def test_list_empty(self, runner, db_path):
        assert "(no tasks)" in run(runner, db_path, "list").output

    def test_toggle_cascade_and_delete(self, runner, seeded_db):
        run(runner, seeded_db, "toggle", "2")
        result = run(runner, seeded_db, "toggle", "3")
        assert "Task 3 is now completed." in result.output
        assert {t.id: t.completed for t in stored_tasks(seeded_db)} == {1: True, 2: True, 3: True, 4: False}

        result = run(runner, seeded_db, "delete", "1")
        assert "Removed 3 task(s)." in result.output
        assert [t.id for t in stored_tasks(seeded_db)] == [4]

    def test_not_found_messages_exit_cleanly(self, runner, seeded_db):
        assert "Task 999 not found." in run(runner, seeded_db, "toggle", "999").output
        assert "Task 999 not found." in run(runner, seeded_db, "delete", "999").output
        assert "Task 999 not found." in run(runner, seeded_db, "edit", "999", "x").output
        assert "Task 999 not found." in run(runner, seeded_db, "show", "999").output
        assert "not a parent task" in run(runner, seeded_db, "subtask", "2").output

    def test_subtask_and_edit(self, runner, seeded_db):
        run(runner, seeded_db, "subtask", "1")
        new_id = stored_tasks(seeded_db)[3].id
        run(runner, seeded_db, "edit", str(new_id), "Sub", "A3")

        tasks = stored_tasks(seeded_db)
        assert [t.text for t in tasks] == ["Parent A", "Sub A1", "Sub A2", "Sub A3", "Parent B"]

    def test_move(self, runner, seeded_db):
        assert "Order unchanged." in run(runner, seeded_db, "move", "4", "2").output
        assert "Moved task 4." in run(runner, seeded_db, "move", "4", "1").output
        assert [t.id for t in stored_tasks(seeded_db)] == [4, 1, 2, 3]

    def test_show(self, runner, seeded_db):
        output = run(runner, seeded_db, "show", "1").output
        assert "Parent A" in output
        assert "Pending" in output
        assert "Sub A1" in output and "Sub A2" in output


class TestExpandCommand:

    def test_expand(self, runner, db_path):
        with patch("todo_manager.cli.GeminiSubtaskGenerator.generate_subtasks",
                   return_value=["Pick a date", "Invite friends"]):
            result = run(runner, db_path, "expand", "Plan", "party")

        assert "with 2 subtask(s)" in result.output
        assert [t.text for t in stored_tasks(db_path)] == ["Plan party", "Pick a date", "Invite friends"]

    def test_expand_failure_reports_message(self, runner, db_path):
        with patch("todo_manager.cli.GeminiSubtaskGenerator.generate_subtasks",
                   side_effect=SubtaskGenerationError("no key")):
            result = run(runner, db_path, "expand", "Learn", "piano")

        assert "Could not generate subtasks" in result.output
        assert [t.text for t in stored_tasks(db_path)] == ["Learn piano"]


class TestImportExportTheme:

    def test_import_then_export(self, runner, db_path, tmp_path):
        source = tmp_path / "tasks.yaml"
        source.write_text(yaml.safe_dump({"tasks": [
            {"text": "Plan trip", "subtasks": ["Book flights", "Pack"]},
            "Water plants",
        ]}))

        result = run(runner, db_path, "import", str(source))
        assert "Imported 2 task(s) and 2 subtask(s)." in result.output

        target = tmp_path / "out.yaml"
        run(runner, db_path, "export", str(target))
        exported = yaml.safe_load(target.read_text())
        assert [t["text"] for t in exported["tasks"]] == ["Plan trip", "Water plants"]
        assert [s["text"] for s in exported["tasks"][0]["subtasks"]] == ["Book flights", "Pack"]

    def test_import_bad_structure_fails(self, runner, db_path, tmp_path):
        source = tmp_path / "bad.yaml"
        source.write_text("tasks: not-a-list\n")
        result = runner.invoke(main, ["--db", db_path, "import", str(source)])
        assert result.exit_code != 0
        assert "must be a list" in result.output

    def test_export_to_stdout(self, runner, seeded_db):
        document = yaml.safe_load(run(runner, seeded_db, "export").output)
        assert [t["text"] for t in document["tasks"]] == ["Parent A", "Parent B"]

    def test_theme(self, runner, db_path):
        assert run(runner, db_path, "theme").output.strip() == "light"
        assert run(runner, db_path, "theme", "--toggle").output.strip() == "dark"
        assert run(runner, db_path, "theme").output.strip() == "dark"


def test_render_tasks_indents_subtasks(scenario_tasks):
    lines = render_tasks(scenario_tasks)
    assert lines[0] == "[ ] 1  Parent A"
    assert lines[1] == "    [ ] 2  Sub A1"
    assert lines[3] == "[ ] 4  Parent B"

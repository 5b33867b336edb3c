"""
Click CLI for the To-Do Manager

Command-line front end over the same SQLite-backed task store the API
server uses, plus a ``serve`` command that launches the dashboard API with
uvicorn.
"""

import logging
import os
from typing import List, Optional, Sequence

import click
import yaml

from .config import DEFAULT_DATABASE_PATH, Settings, configure_logging
from .expansion import ExpansionGuard, GeminiSubtaskGenerator, expand_task
from .importer import export_tasks, import_tasks_from_file
from .models import Task
from .storage import SqliteStorage
from .store import TaskStore
from .theme import ThemePreference

logger = logging.getLogger(__name__)


class CLIContext:
    """Lazily opened storage shared by the commands of one invocation."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._storage: Optional[SqliteStorage] = None
        self._store: Optional[TaskStore] = None

    @property
    def storage(self) -> SqliteStorage:
        if self._storage is None:
            self._storage = SqliteStorage(self.db_path)
        return self._storage

    @property
    def store(self) -> TaskStore:
        if self._store is None:
            self._store = TaskStore(self.storage)
        return self._store

    def close(self) -> None:
        if self._storage is not None:
            self._storage.close()


pass_cli = click.make_pass_decorator(CLIContext)


def format_task(task: Task) -> str:
    mark = "x" if task.completed else " "
    indent = "    " if task.is_subtask else ""
    text = task.text or "<untitled>"
    return f"{indent}[{mark}] {task.id}  {text}"


def render_tasks(tasks: Sequence[Task]) -> List[str]:
    """One line per task, subtasks indented under their parent."""
    if not tasks:
        return ["(no tasks)"]
    return [format_task(task) for task in tasks]


@click.group()
@click.option("--db", "db_path", envvar="TODO_DATABASE_PATH", default=DEFAULT_DATABASE_PATH,
              show_default=True, help="SQLite file holding the task list")
@click.option("--log-level", default="WARNING", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def main(ctx, db_path, log_level):
    """To-do list manager with subtasks and AI expansion."""
    configure_logging(log_level)
    ctx.obj = CLIContext(db_path)
    ctx.call_on_close(ctx.obj.close)


@main.command("list")
@pass_cli
def list_command(cli: CLIContext):
    """Show the task list in order."""
    for line in render_tasks(cli.store.tasks):
        click.echo(line)


@main.command()
@click.argument("task_id", type=int)
@pass_cli
def show(cli: CLIContext, task_id):
    """Show one task and its metadata."""
    task = cli.store.get_task(task_id)
    if task is None:
        click.echo(f"Task {task_id} not found.")
        return
    click.echo(f"ID:         {task.id}")
    click.echo(f"Text:       {task.text or '<untitled>'}")
    click.echo(f"Status:     {'Completed' if task.completed else 'Pending'}")
    click.echo(f"Created At: {task.created_at}")
    if task.is_subtask:
        click.echo(f"Parent:     {task.parent_id}")
    for sub in cli.store.tasks:
        if sub.is_subtask and sub.parent_id == task.id:
            click.echo(format_task(sub))


@main.command()
@click.argument("text", nargs=-1)
@pass_cli
def add(cli: CLIContext, text):
    """Add a task at the top of the list."""
    task = cli.store.add_task(" ".join(text))
    if task is not None:
        click.echo(f"Added task {task.id}.")


@main.command()
@click.argument("parent_id", type=int)
@pass_cli
def subtask(cli: CLIContext, parent_id):
    """Add an empty subtask under PARENT_ID."""
    created = cli.store.add_subtask(parent_id)
    if created is None:
        click.echo(f"Task {parent_id} not found or is not a parent task.")
    else:
        click.echo(f"Added subtask {created.id} under task {parent_id}.")


@main.command()
@click.argument("task_id", type=int)
@click.argument("text", nargs=-1)
@pass_cli
def edit(cli: CLIContext, task_id, text):
    """Replace the text of TASK_ID."""
    if cli.store.edit_task(task_id, " ".join(text)):
        click.echo(f"Task {task_id} updated.")
    else:
        click.echo(f"Task {task_id} not found.")


@main.command()
@click.argument("task_id", type=int)
@pass_cli
def toggle(cli: CLIContext, task_id):
    """Toggle completion of TASK_ID (cascades to subtasks and parent)."""
    if not cli.store.toggle_task(task_id):
        click.echo(f"Task {task_id} not found.")
        return
    task = cli.store.get_task(task_id)
    click.echo(f"Task {task_id} is now {'completed' if task.completed else 'pending'}.")


@main.command()
@click.argument("task_id", type=int)
@pass_cli
def delete(cli: CLIContext, task_id):
    """Delete TASK_ID together with its subtasks."""
    removed = cli.store.delete_task(task_id)
    if not removed:
        click.echo(f"Task {task_id} not found.")
    else:
        click.echo(f"Removed {len(removed)} task(s).")


@main.command()
@click.argument("active_id", type=int)
@click.argument("over_id", type=int)
@pass_cli
def move(cli: CLIContext, active_id, over_id):
    """Move ACTIVE_ID (with its subtasks) onto the position of OVER_ID."""
    if cli.store.reorder(active_id, over_id):
        click.echo(f"Moved task {active_id}.")
    else:
        click.echo("Order unchanged.")


@main.command()
@click.argument("text", nargs=-1)
@pass_cli
def expand(cli: CLIContext, text):
    """Add a task and let Gemini break it into subtasks."""
    generator = GeminiSubtaskGenerator.from_settings(Settings.from_env())
    result = expand_task(cli.store, " ".join(text), generator, ExpansionGuard())
    if result.parent is None:
        return
    click.echo(f"Added task {result.parent.id} with {len(result.subtasks)} subtask(s).")
    if result.error:
        click.echo(result.error, err=True)


@main.command("import")
@click.argument("yaml_file", type=click.Path(exists=True, dir_okay=False))
@pass_cli
def import_command(cli: CLIContext, yaml_file):
    """Import task families from YAML_FILE."""
    try:
        stats = import_tasks_from_file(cli.store, yaml_file)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Imported {stats['tasks_created']} task(s) and {stats['subtasks_created']} subtask(s).")
    for error in stats["errors"]:
        click.echo(f"  {error}", err=True)


@main.command("export")
@click.argument("yaml_file", type=click.Path(dir_okay=False), required=False)
@pass_cli
def export_command(cli: CLIContext, yaml_file):
    """Write the task list as YAML to YAML_FILE or stdout."""
    document = yaml.safe_dump(export_tasks(cli.store), sort_keys=False, allow_unicode=True)
    if yaml_file:
        with open(yaml_file, "w", encoding="utf-8") as f:
            f.write(document)
        click.echo(f"Exported to {yaml_file}.")
    else:
        click.echo(document, nl=False)


@main.command()
@click.option("--toggle", "do_toggle", is_flag=True, help="Switch between dark and light")
@pass_cli
def theme(cli: CLIContext, do_toggle):
    """Show or toggle the theme preference."""
    preference = ThemePreference(cli.storage)
    if do_toggle:
        preference.toggle()
    click.echo(preference.value)


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (development)")
@pass_cli
def serve(cli: CLIContext, host, port, reload):
    """Run the dashboard API with uvicorn."""
    import uvicorn

    os.environ["TODO_DATABASE_PATH"] = cli.db_path
    click.echo(f"Serving To-Do Manager API on http://{host}:{port} (db: {cli.db_path})")
    uvicorn.run("todo_manager.api:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    main()

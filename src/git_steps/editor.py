"""
Sequence editor run by git during a step rewrite.

git invokes this module with the path of the todo list as last argument.
Each mode is a pure transformation of the parsed todo entries; the click
commands only read the file, apply the transformation and write it back.
Lines are never reordered.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import click

from . import step as steps
from .cli import console, setup_logging
from .commands import task_command
from .models import RebaseError
from .paths import ProjectPaths
from .rebase_state import RebaseStateStore
from .todo import TodoCommand, TodoEntry, format_todo, parse_todo


logger = logging.getLogger(__name__)


def _entry_number(entry: TodoEntry, root_hash: Optional[str]) -> Optional[str]:
    descriptor = entry.step
    if descriptor is not None:
        return descriptor.number
    if root_hash and entry.commit and root_hash.startswith(entry.commit):
        return steps.ROOT
    return None


def _replay(entry: TodoEntry) -> List[TodoEntry]:
    """Replay a step commit so that it gets numbered by its new position."""
    descriptor = entry.step
    if descriptor is None:
        return [TodoEntry(TodoCommand.PICK, entry.commit, entry.subject)]
    if descriptor.is_super:
        replayed = TodoEntry.exec_line(task_command("super-pick", entry.commit))
    else:
        replayed = TodoEntry(TodoCommand.PICK, entry.commit, entry.subject)
    return [replayed, TodoEntry.exec_line(task_command("renumber"))]


def _finish(udiff: bool = False, udiff_path: Optional[str] = None) -> List[TodoEntry]:
    tail = [TodoEntry.exec_line(task_command("rebranch-super"))]
    if udiff:
        args = ["--udiff-path", udiff_path] if udiff_path else []
        tail.append(TodoEntry.exec_line(task_command("finish-step-map", *args)))
    return tail


def edit_entries(
    entries: Iterable[TodoEntry],
    selected: Iterable[str],
    root_hash: Optional[str] = None,
    udiff: bool = False,
    udiff_path: Optional[str] = None,
    renumber: bool = True,
) -> List[TodoEntry]:
    """Mark selected steps for editing.

    The first selected commit becomes a plain `edit`. Everything after it is
    replayed and renumbered, since the author may add or remove steps while
    paused; later selected steps pause through `break` once renumbered.
    Without renumbering every selected commit is a plain `edit`.
    Every pause is preceded by a rebase state snapshot.
    """
    selected = set(selected)
    stash = TodoEntry.exec_line(task_command("stash-rebase-state"))
    result: List[TodoEntry] = []
    editing = False

    for entry in entries:
        if entry.commit is None:
            result.append(entry)
            continue

        is_selected = _entry_number(entry, root_hash) in selected
        if not editing or not renumber:
            if is_selected:
                result.append(stash)
                result.append(TodoEntry(TodoCommand.EDIT, entry.commit, entry.subject))
                editing = True
            else:
                result.append(TodoEntry(TodoCommand.PICK, entry.commit, entry.subject))
            continue

        result.extend(_replay(entry))
        if is_selected:
            result.append(stash)
            result.append(TodoEntry(TodoCommand.BREAK))

    return result + _finish(udiff, udiff_path)


def sort_entries(entries: Iterable[TodoEntry]) -> List[TodoEntry]:
    """Renumber every step in range by its position."""
    result: List[TodoEntry] = []
    for entry in entries:
        if entry.commit is None:
            result.append(entry)
        else:
            result.extend(_replay(entry))
    return result + _finish()


def reword_entries(entries: Iterable[TodoEntry], message: Optional[str]) -> List[TodoEntry]:
    """Change the message of the first commit in range, keeping its number."""
    result: List[TodoEntry] = []
    args = ["-m", message] if message else []
    reworded = False
    for entry in entries:
        if entry.commit is None:
            result.append(entry)
            continue
        result.append(TodoEntry(TodoCommand.PICK, entry.commit, entry.subject))
        if not reworded:
            result.append(TodoEntry.exec_line(task_command("reword", *args)))
            reworded = True
    return result + _finish()


def _rewrite(todo_file: str, transform) -> None:
    path = Path(todo_file)
    entries = parse_todo(path.read_text(encoding="utf-8"))
    updated = transform(entries)
    path.write_text(format_todo(updated), encoding="utf-8")
    logger.debug(f"Rewrote {path} with {len(updated)} instructions")


@click.group()
def editor() -> None:
    """Sequence editor for step rewrites (invoked by git)."""
    setup_logging()


@editor.command("edit")
@click.option("--udiff", is_flag=True, help="Hand the step map to another project when done")
@click.option("--udiff-path", default=None, help="Project whose manuals reference this one")
@click.option("--root-hash", default=None, help="Hash of the root commit when root is edited")
@click.option("--no-renumber", is_flag=True, help="Keep the following steps as they are")
@click.argument("args", nargs=-1, required=True)
def edit_command(
    udiff: bool, udiff_path: Optional[str], root_hash: Optional[str], no_renumber: bool, args
) -> None:
    *selected, todo_file = args
    _rewrite(
        todo_file,
        lambda entries: edit_entries(entries, selected, root_hash, udiff, udiff_path, renumber=not no_renumber),
    )


@editor.command("sort")
@click.argument("todo_file")
def sort_command(todo_file: str) -> None:
    _rewrite(todo_file, sort_entries)


@editor.command("reword")
@click.option("--message", "-m", default=None)
@click.argument("todo_file")
def reword_command(message: Optional[str], todo_file: str) -> None:
    _rewrite(todo_file, lambda entries: reword_entries(entries, message))


@editor.command("reset-todo")
@click.option("--states-dir", default=None, help="Rebase states repository of the project")
@click.argument("todo_file")
def reset_todo_command(states_dir: Optional[str], todo_file: str) -> None:
    """Replace the live todo with the one stored at the restored pause."""
    directory = Path(states_dir) if states_dir else ProjectPaths.resolve().rebase_states
    todo = RebaseStateStore(directory).read_todo()
    Path(todo_file).write_text(todo + "\n" if todo else "", encoding="utf-8")


def main() -> None:
    try:
        editor()
    except RebaseError as e:
        console.print(f"\n❌ **Sequence Editor Error:** {e}", style="bold red")
        logger.debug("Sequence editor failed", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Tasks executed by `exec` lines of a step rewrite.

Each task runs in its own process while git's rebase is stopped between two
instructions, reads whatever it needs from the repository and the session
storage, and exits. A non-zero exit stops the rebase.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Dict, Optional

import click

from . import step as steps
from .cli import console, setup_logging
from .commands import CLI_MODULE, SUBMODULE_CWD_ENV
from .git_manager import GitManager
from .history import StepHistory
from .models import RebaseError
from .paths import ProjectPaths
from .rebase_state import RebaseStateStore
from .step_map import StepMapStore
from .storage import HOOK_STEP, LocalStorage, SessionState


logger = logging.getLogger(__name__)


STEP_FILE_PATTERN = re.compile(r"step(\d+)\.(md|tmpl)")
DIFF_STEP_PATTERN = re.compile(r"\{\{\s*diffStep\s+\"?(\d+\.\d+)\"?.*\}\}")
DIFF_STEP_NUMBER_PATTERN = re.compile(r"(diffStep\s+\"?)\d+\.\d+")
MODULE_PATTERN = re.compile(r"module\s?=\s?\"?([^\s\"]+)\"?")
REMOVED_STEP = "XX.XX"
ISOLATED_GIT_VARS = ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE")


class TaskContext:
    """Repository handles shared by the tasks of one process."""

    def __init__(self, cwd: Optional[Path] = None) -> None:
        self.gm = GitManager(cwd)
        self.history = StepHistory(self.gm)
        self.paths = ProjectPaths(root=self.gm.working_dir, git_dir=self.gm.git_dir)
        self.storage = LocalStorage(self.paths.storage)
        self.step_map = StepMapStore(self.storage, self.history)


def shift_manual_files(patch: str, diff: int) -> str:
    """Rename `step<N>.md`/`step<N>.tmpl` references by `diff` super-steps."""
    if not diff:
        return patch
    return STEP_FILE_PATTERN.sub(lambda m: f"step{int(m.group(1)) + diff}.{m.group(2)}", patch)


def fix_diff_step_helpers(patch: str, step_map: Dict[str, str], module: str) -> str:
    """Point `{{diffStep "N.M" module=...}}` helpers of `module` at new steps.

    Helpers of other modules are left alone; a step that no longer exists
    becomes a placeholder.
    """

    def replace(match: re.Match) -> str:
        helper = match.group(0)
        helper_module = MODULE_PATTERN.search(helper)
        if (helper_module.group(1) if helper_module else "") != module:
            return helper
        new_step = step_map.get(match.group(1), REMOVED_STEP)
        return DIFF_STEP_NUMBER_PATTERN.sub(lambda m: m.group(1) + new_step, helper, count=1)

    return DIFF_STEP_PATTERN.sub(replace, patch)


def renumber(ctx: TaskContext) -> Optional[str]:
    """Relabel HEAD with the number its position in history implies."""
    head = ctx.history.head_step()
    if head is None:
        logger.debug("HEAD is not a step; nothing to renumber")
        return None

    new_step = ctx.history.next_step(1) if not head.is_super else ctx.history.next_super_step(1)
    ctx.storage.set_item(HOOK_STEP, new_step)
    if ctx.step_map.exists():
        ctx.step_map.update_reset(head.number, new_step)

    if new_step == head.number:
        return new_step

    body = ctx.gm.get_commit_body("HEAD")
    message = steps.format_step(new_step, head.message)
    if body:
        message = f"{message}\n\n{body}"
    ctx.gm.commit(message, amend=True, allow_empty=True)
    logger.info(f"Renumbered step {head.number} -> {new_step}")
    return new_step


def reword(ctx: TaskContext, message: Optional[str]) -> None:
    """Replace HEAD's message while keeping its step number."""
    head = ctx.history.head_step()
    if head is None:
        ctx.gm.commit(message, amend=True, allow_empty=True)
        return
    ctx.storage.set_item(HOOK_STEP, head.number)
    if message is None:
        ctx.gm.commit(amend=True, allow_empty=True)
        return
    ctx.gm.commit(steps.format_step(head.number, message), amend=True, allow_empty=True)
    logger.info(f"Reworded step {head.number}")


def super_pick(ctx: TaskContext, commit: str) -> None:
    """Replay a super-step commit, moving its manual files to the new number."""
    subject = ctx.gm.get_commit_subject(commit) or ""
    old = steps.parse(subject)
    if old is None:
        raise RebaseError(f"Commit {commit} is not a step")

    new_super = int(ctx.history.next_super_step())
    patch = shift_manual_files(ctx.gm.diff_patch(commit), new_super - old.super_number)

    session = SessionState.load(ctx.storage)
    if session.submodule_cwd:
        source = Path(session.submodule_cwd)
        step_map = StepMapStore.for_project(source).get(require_committed=True)
        if step_map is not None:
            patch = fix_diff_step_helpers(patch, step_map, source.name)

    ctx.gm.apply_patch(patch)
    ctx.gm.commit(reuse=commit, allow_empty=True)
    logger.info(f"Super-picked step {old.number} as step {new_super}")


def stash_rebase_state(ctx: TaskContext) -> None:
    store = RebaseStateStore(ctx.paths.rebase_states)
    session = SessionState.load(ctx.storage)
    store.stash_from_todo(ctx.gm.rebase_todo_path(), ctx.gm, session)


def rebranch_super(ctx: TaskContext) -> None:
    """Recreate the root branch and one branch per super-step."""
    branch = ctx.gm.get_current_branch()
    step_branch = re.compile(rf"{re.escape(branch)}-step\d+")
    for name in ctx.gm.list_local_branches():
        if name == f"{branch}-root" or step_branch.fullmatch(name):
            ctx.gm.delete_branch(name)

    ctx.gm.create_branch(f"{branch}-root", ctx.gm.root_hash())
    output = ctx.gm.log("--format=%H %s", "--extended-regexp", f"--grep={steps.SUPER_STEP_GREP}")
    for line in output.splitlines():
        commit, _, subject = line.partition(" ")
        descriptor = steps.parse(subject)
        if descriptor and descriptor.is_super:
            ctx.gm.create_branch(f"{branch}-step{descriptor.number}", commit)


def finish_step_map(ctx: TaskContext, udiff_path: Optional[str] = None) -> None:
    """Publish the step map, let the dependent project consume it, dispose it."""
    ctx.step_map.commit()
    try:
        if udiff_path:
            env = {k: v for k, v in os.environ.items() if k not in ISOLATED_GIT_VARS}
            env[SUBMODULE_CWD_ENV] = str(ctx.paths.root)
            cmd = [sys.executable, "-m", CLI_MODULE, "sort", "--root"]
            logger.info(f"Updating step references in {udiff_path}")
            try:
                subprocess.run(cmd, cwd=udiff_path, env=env, check=True)
            except (OSError, subprocess.CalledProcessError) as e:
                logger.error(f"Failed to update step references in {udiff_path}: {e}")
                raise RebaseError(f"Failed to update step references in {udiff_path}: {e}") from e
    finally:
        ctx.step_map.dispose()


@click.group()
@click.pass_context
def tasks(ctx: click.Context) -> None:
    """Tasks run from `exec` lines of a step rewrite."""
    setup_logging()
    ctx.obj = TaskContext()


@tasks.command("renumber")
@click.pass_obj
def renumber_command(ctx: TaskContext) -> None:
    renumber(ctx)


@tasks.command("reword")
@click.option("--message", "-m", default=None)
@click.pass_obj
def reword_command(ctx: TaskContext, message: Optional[str]) -> None:
    reword(ctx, message)


@tasks.command("super-pick")
@click.argument("commit")
@click.pass_obj
def super_pick_command(ctx: TaskContext, commit: str) -> None:
    super_pick(ctx, commit)


@tasks.command("stash-rebase-state")
@click.pass_obj
def stash_rebase_state_command(ctx: TaskContext) -> None:
    stash_rebase_state(ctx)


@tasks.command("rebranch-super")
@click.pass_obj
def rebranch_super_command(ctx: TaskContext) -> None:
    rebranch_super(ctx)


@tasks.command("finish-step-map")
@click.option("--udiff-path", default=None)
@click.pass_obj
def finish_step_map_command(ctx: TaskContext, udiff_path: Optional[str]) -> None:
    finish_step_map(ctx, udiff_path)


def main() -> None:
    try:
        tasks()
    except RebaseError as e:
        console.print(f"\n❌ **Rebase Task Error:** {e}", style="bold red")
        logger.debug("Rebase task failed", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

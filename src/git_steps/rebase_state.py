"""
Rebase state snapshots kept in a secondary, disposable repository.

The outer rebase consumes its todo list as it goes, so the only record of
what was left at an earlier pause is the snapshot taken there. Each pause is
one commit whose message is the step in effect; its tree holds the items
below as plain files.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from git import Git, Repo
from git.exc import GitCommandError

from . import step as steps
from .git_manager import GitManager
from .history import StepHistory
from .models import (
    GitRepositoryError,
    MalformedStep,
    NoPreviousSteps,
    RebaseSnapshot,
    StepNotEdited,
)
from .storage import REBASE_NEW_STEP, REBASE_OLD_STEP, LocalStorage, SessionState
from .todo import TodoCommand, TodoEntry


logger = logging.getLogger(__name__)


HEAD_ITEM = "HEAD"
TODO_ITEM = "TODO"
INIT_MESSAGE = "init"


class RebaseStateStore:
    """Snapshots of an in-progress rewrite, one commit per pause."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.storage = LocalStorage(self.directory)

    @property
    def _env(self) -> Dict[str, str]:
        # Tasks run from inside the outer rebase and may inherit its GIT_DIR
        git_dir = self.directory / ".git"
        return {
            "GIT_DIR": str(git_dir),
            "GIT_WORK_TREE": str(self.directory),
            "GIT_INDEX_FILE": str(git_dir / "index"),
        }

    def _git(self) -> Git:
        git = Git(str(self.directory))
        git.update_environment(**self._env)
        return git

    def _gm(self) -> GitManager:
        return GitManager.from_repo(Repo(self.directory), env=self._env)

    def exists(self) -> bool:
        return (self.directory / ".git").is_dir()

    def initialize(self) -> None:
        """Wipe and re-create the repository with a single init commit."""
        shutil.rmtree(self.directory, ignore_errors=True)
        self.directory.mkdir(parents=True)
        git = self._git()
        try:
            git.init()
            git.config("user.name", "git-steps")
            git.config("user.email", "git-steps@localhost")
            git.commit("--allow-empty", "-m", INIT_MESSAGE)
        except GitCommandError as e:
            logger.error(f"Failed to initialize rebase states at {self.directory}: {e}")
            raise GitRepositoryError(f"Failed to initialize rebase states: {e}") from e
        logger.info(f"Initialized rebase states repository at {self.directory}")

    def snapshot(
        self,
        step: str,
        head: str,
        todo: str,
        old_step: Optional[str] = None,
        new_step: Optional[str] = None,
    ) -> RebaseSnapshot:
        """Record one pause point; the commit message is the step."""
        if not self.exists():
            self.initialize()
        self.storage.set_item(HEAD_ITEM, head)
        self.storage.set_item(TODO_ITEM, todo)
        self.storage.set_item(REBASE_OLD_STEP, old_step or step)
        self.storage.set_item(REBASE_NEW_STEP, new_step or step)

        gm = self._gm()
        gm.add_all()
        gm.commit(step, allow_empty=True)
        commit = gm.head_hash()
        logger.info(f"Stashed rebase state for step {step} at {commit[:8]}")
        return RebaseSnapshot(
            step=step,
            head=head,
            todo=todo,
            old_step=old_step or step,
            new_step=new_step or step,
            commit=commit,
        )

    def stash_from_todo(
        self, todo_path: Path, primary: GitManager, session: SessionState
    ) -> Optional[RebaseSnapshot]:
        """Snapshot the live todo right before the pause it leads into.

        The first line is the instruction about to run: either `edit <sha>`
        or a `break` placed after an already replayed step. It is left out of
        the stored todo.
        """
        lines = [ln for ln in Path(todo_path).read_text(encoding="utf-8").splitlines() if ln.strip()]
        lines = [ln for ln in lines if not ln.lstrip().startswith("#")]
        if not lines:
            return None

        entry = TodoEntry.from_string(lines[0])
        if entry is None:
            return None

        if entry.command is TodoCommand.EDIT:
            head = primary.rev_parse(entry.commit)
            descriptor = entry.step
            if descriptor is not None:
                step = descriptor.number
            elif head == primary.root_hash():
                step = steps.ROOT
            else:
                logger.debug(f"Edited commit {entry.commit} is not a step; nothing to stash")
                return None
        elif entry.command is TodoCommand.BREAK:
            head = primary.head_hash()
            descriptor = StepHistory(primary).head_step()
            step = descriptor.number if descriptor else steps.ROOT
        else:
            return None

        todo = "\n".join(lines[1:])
        return self.snapshot(step, head, todo, session.old_step, session.new_step)

    def _subjects(self) -> List[str]:
        if not self.exists():
            return []
        output = self._gm().log("--format=%s")
        return [ln.strip() for ln in output.splitlines()]

    def list_pauses(self) -> List[str]:
        """Steps paused at before the current pause, most recent first."""
        subjects = self._subjects()
        # Oldest entry is the init commit, newest is the pause we are at
        return subjects[1:-1]

    def resolve_target(self, target: Optional[str] = None) -> str:
        """Turn a step-back argument into a step that was paused at."""
        pauses = self.list_pauses()
        if not pauses:
            raise NoPreviousSteps("No previous steps found")

        if target is None:
            return pauses[0]

        multiplier = steps.MULTIPLIER_PATTERN.match(target)
        if multiplier:
            times = int(multiplier.group(1))
            if times < 1 or times > len(pauses):
                raise StepNotEdited(f"Only {len(pauses)} previous step(s) were edited")
            return pauses[times - 1]

        if target != steps.ROOT and not steps.is_step_number(target):
            raise MalformedStep("Provided argument is neither a step or a multiplier")
        if target not in pauses:
            raise StepNotEdited(f"Provided target step {target} was not edited")
        return target

    def find_snapshot(self, step: str) -> str:
        """Hash of the most recent earlier snapshot taken at `step`."""
        gm = self._gm()
        output = gm.log("--format=%H %s", "--skip=1")
        for line in output.splitlines():
            commit, _, subject = line.partition(" ")
            if subject.strip() == step:
                return commit
        raise StepNotEdited(f"Provided target step {step} was not edited")

    def restore(self, step: str, primary: GitManager, session: SessionState, reset_todo_editor: str) -> RebaseSnapshot:
        """Rewind both repositories to the snapshot taken at `step`.

        `reset_todo_editor` is the sequence editor command that writes the
        stored todo back into the live rebase.
        """
        commit = self.find_snapshot(step)
        self._gm().reset_hard(commit)

        head = self.storage.get_item(HEAD_ITEM)
        if not head:
            raise GitRepositoryError(f"Snapshot {commit[:8]} has no HEAD recorded")
        primary.reset_hard(head)

        session.old_step = self.storage.get_item(REBASE_OLD_STEP)
        session.new_step = self.storage.get_item(REBASE_NEW_STEP)
        session.hooks_disabled = False

        primary.edit_todo(reset_todo_editor)
        logger.info(f"Restored rebase state of step {step} ({head[:8]})")
        return RebaseSnapshot(
            step=step,
            head=head,
            todo=self.read_todo(),
            old_step=session.old_step,
            new_step=session.new_step,
            commit=commit,
        )

    def read_todo(self) -> str:
        return self.storage.get_item(TODO_ITEM) or ""

    def current_step(self) -> Optional[str]:
        subjects = self._subjects()
        if len(subjects) < 2:
            return None
        return subjects[0]

"""
Step operations and the history rewrites that implement them.

Every operation reads the session state at its start and saves it whenever a
rewrite is launched or paused. Rewrites are driven by git's interactive
rebase: the sequence editor and the `exec` tasks run as separate processes
and pick up the session from storage.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from . import step as steps
from .commands import SUBMODULE_CWD_ENV, editor_command
from .conflict_resolver import DEFAULT_MANIFEST, ConflictResolver
from .git_manager import GitManager
from .history import StepHistory
from .models import (
    GitRepositoryError,
    NoPreviousSteps,
    RebaseError,
    RebaseSnapshot,
    RewriteAbortFailure,
    RewriteStatus,
    RootRemovalError,
    StepDescriptor,
    StepNotFound,
)
from .paths import ProjectPaths
from .prompt_interface import NoOpPrompt, UserPrompt
from .rebase_state import RebaseStateStore
from .step_map import StepMapStore
from .storage import HOOK_STEP, LocalStorage, SessionState


logger = logging.getLogger(__name__)


RANGE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)?\.\.(?:\.+)?(\d+(?:\.\d+)?)?$")


def expand_ranges(selectors: Iterable[str], all_steps: List[str]) -> List[str]:
    """Unwrap `A..B` / `A...B` selectors against the ordered step list.

    A missing start means root and a missing end the last step. An end that
    is a bare super-step also takes in that super-step's sub-steps.
    """
    expanded: List[str] = []
    for selector in selectors:
        match = RANGE_PATTERN.match(selector)
        if not match:
            expanded.append(selector)
            continue

        start = match.group(1) or steps.ROOT
        end = match.group(2) or all_steps[-1]
        for bound in (start, end):
            if bound not in all_steps:
                raise StepNotFound(f"Step {bound} not found")

        start_index = all_steps.index(start)
        end_index = all_steps.index(end)
        if end != steps.ROOT and "." not in end:
            for index in range(end_index, len(all_steps)):
                if steps.super_of(all_steps[index]) == end:
                    end_index = index
        expanded.extend(all_steps[start_index:end_index + 1])
    return expanded


class RebaseOrchestrator:
    """Push, pop, tag, edit, sort, reword and step back through a tutorial."""

    def __init__(self, root_path: Optional[Path] = None, prompt: Optional[UserPrompt] = None) -> None:
        """Initialize the orchestrator for the repository containing root_path."""
        self.root_path = root_path or Path.cwd()
        self.git_manager = GitManager(self.root_path)
        self.history = StepHistory(self.git_manager)
        self.paths = ProjectPaths(root=self.git_manager.working_dir, git_dir=self.git_manager.git_dir)
        self.storage = LocalStorage(self.paths.storage)
        self.step_map = StepMapStore(self.storage, self.history)
        self.rebase_states = RebaseStateStore(self.paths.rebase_states)
        self.prompt = prompt or NoOpPrompt()
        logger.info(f"Initialized step orchestrator for {self.paths.root}")

    # --- Session ---
    def load_session(self) -> SessionState:
        return SessionState.load(self.storage)

    def save_session(self, session: SessionState) -> None:
        session.save(self.storage)

    # --- Appending steps ---
    def _commit_step(self, number: str, message: str, allow_empty: bool = False) -> None:
        # Read by the commit-msg hook when it formats the message
        self.storage.set_item(HOOK_STEP, number)
        try:
            self.git_manager.commit(steps.format_step(number, message), allow_empty=allow_empty)
        except GitRepositoryError:
            self.storage.remove_item(HOOK_STEP)
            raise

    def _require_message(self, number: str, message: Optional[str]) -> str:
        if message is None:
            message = self.prompt.ask_message(number)
        if not message or not message.strip():
            raise RebaseError(f"A message must be provided for step {number}")
        return message.strip()

    def push(self, message: Optional[str] = None, allow_empty: bool = False) -> str:
        """Commit the staged changes as the next step."""
        number = self.history.next_step()
        message = self._require_message(number, message)
        self._commit_step(number, message, allow_empty)

        session = self.load_session()
        session.new_step = number
        self.save_session(session)
        logger.info(f"Pushed step {number}")
        return number

    def pop(self) -> Optional[StepDescriptor]:
        """Remove the most recent commit; root can never be removed."""
        gm = self.git_manager
        if gm.head_hash() == gm.root_hash():
            raise RootRemovalError("Can't remove root")

        subject = gm.get_commit_subject("HEAD") or ""
        descriptor = steps.parse(subject)
        gm.reset_hard("HEAD~1")

        if descriptor is None:
            logger.warning("Removed commit was not a step")
            return None

        session = self.load_session()
        session.new_step = self.history.current_step()
        self.save_session(session)

        if self.step_map.exists():
            self.step_map.update_remove(descriptor.number)

        # During a rewrite the branches are rebuilt once it completes
        if descriptor.is_super and not gm.is_rebase_in_progress():
            branch = f"{gm.get_current_branch()}-step{descriptor.number}"
            if gm.branch_exists(branch):
                gm.delete_branch(branch)

        logger.info(f"Popped step {descriptor.number}")
        return descriptor

    def tag(self, message: Optional[str] = None) -> str:
        """Finish the current super-step and create its manual template."""
        gm = self.git_manager
        number = self.history.next_super_step()
        message = self._require_message(number, message)

        self.paths.manual_templates.mkdir(parents=True, exist_ok=True)
        self.paths.manual_views.mkdir(parents=True, exist_ok=True)
        template = self.paths.manual_template(number)
        if not template.exists():
            template.write_text("", encoding="utf-8")
        gm.add_paths([template.relative_to(self.paths.root).as_posix()])

        self._commit_step(number, message)

        if not gm.is_rebase_in_progress():
            gm.create_branch(f"{gm.get_current_branch()}-step{number}")

        session = self.load_session()
        session.new_step = number
        self.save_session(session)
        logger.info(f"Tagged step {number}")
        return number

    # --- Rewrites ---
    def _launch(self, base: str, sequence_editor: str) -> RewriteStatus:
        gm = self.git_manager
        if gm.is_rebase_in_progress():
            raise RebaseError("A rebase is already in progress; continue or abort it first")
        success, conflicts = gm.start_interactive_rebase(base, sequence_editor)
        return self._status_after(success, conflicts)

    def _status_after(self, success: bool, conflicts: List[Path]) -> RewriteStatus:
        if not self.git_manager.is_rebase_in_progress():
            session = self.load_session()
            session.orig_head = None
            session.submodule_cwd = None
            self.save_session(session)
            logger.info("Rewrite completed")
            return RewriteStatus.COMPLETED
        if conflicts:
            return RewriteStatus.CONFLICTED
        if not success:
            logger.warning("Rewrite stopped on a failing instruction")
        return RewriteStatus.PAUSED

    def _begin_session(self, old_step: Optional[str] = None, new_step: Optional[str] = None) -> SessionState:
        session = self.load_session()
        session.orig_head = self.git_manager.head_hash()
        if old_step is not None:
            session.old_step = old_step
        if new_step is not None:
            session.new_step = new_step
        submodule_cwd = os.environ.get(SUBMODULE_CWD_ENV)
        if submodule_cwd:
            session.submodule_cwd = submodule_cwd
        self.save_session(session)
        return session

    def resolve_steps(self, selectors: Iterable[str]) -> List[str]:
        """Expand, resolve, deduplicate and sort step selectors."""
        all_steps = self.history.all_steps()
        numbers = []
        for selector in expand_ranges([s for s in selectors if s], all_steps):
            number = self.history.resolve_selector(selector)
            if number not in all_steps:
                raise StepNotFound(f"Step {number} not found")
            numbers.append(number)
        return steps.sort_steps(numbers)

    def edit(
        self,
        selectors: Iterable[str] = (),
        udiff: bool = False,
        udiff_path: Optional[str] = None,
        renumber: bool = True,
    ) -> RewriteStatus:
        """Pause the history at each selected step."""
        all_steps = self.history.all_steps()
        numbers = self.resolve_steps(selectors)
        if not numbers:
            numbers = [self.history.current_step()]

        earliest = min(numbers, key=all_steps.index)
        base = self.history.step_base(earliest)

        self._begin_session()
        self.rebase_states.initialize()
        if udiff:
            self.step_map.initialize(pending=True)

        args: List[str] = []
        if udiff:
            args.append("--udiff")
        if udiff_path:
            args.extend(["--udiff-path", str(Path(udiff_path).resolve())])
        if not renumber:
            args.append("--no-renumber")
        if steps.ROOT in numbers:
            args.extend(["--root-hash", self.git_manager.root_hash()])

        logger.info(f"Editing steps {', '.join(numbers)} from base {base}")
        return self._launch(base, editor_command("edit", *args, *numbers))

    def sort(self, step: Optional[str] = None) -> RewriteStatus:
        """Renumber steps by position, from super-step `step` onwards."""
        if step is None:
            step = self.history.current_step()

        if step == steps.ROOT:
            new_step, old_step, base = "1", steps.ROOT, "--root"
        else:
            super_number = int(steps.super_of(steps.assert_step(step)))
            old_step = str(super_number - 1) if super_number > 1 else steps.ROOT
            new_step = f"{super_number}.1"
            # Sub-steps of N start right after super-step N-1
            base = "--root" if old_step == steps.ROOT else self.history.step_hash(old_step)

        self._begin_session(old_step=old_step, new_step=new_step)
        logger.info(f"Sorting steps from {new_step} (base {base})")
        return self._launch(base, editor_command("sort"))

    def reword(self, step: Optional[str] = None, message: Optional[str] = None) -> RewriteStatus:
        """Change one step's message without renumbering it."""
        if step is None:
            step = self.history.current_step()
        if step != steps.ROOT:
            steps.assert_step(step)
        message = self._require_message(step, message)
        # Todo lines hold a single line each
        message = message.splitlines()[0]

        base = self.history.step_base(step)
        self._begin_session()
        logger.info(f"Rewording step {step}")
        return self._launch(base, editor_command("reword", "-m", message))

    def step_back(self, target: Optional[str] = None, interactive: bool = False) -> RebaseSnapshot:
        """Go back to an earlier pause of the current rewrite."""
        gm = self.git_manager
        if not gm.is_rebase_in_progress():
            raise RebaseError("fatal: No rebase in progress?")

        if target is None and interactive:
            pauses = self.rebase_states.list_pauses()
            if not pauses:
                raise NoPreviousSteps("No previous steps found")
            target = self.prompt.choose_step_back(pauses)
            if target is None:
                raise RebaseError("No step was chosen")

        step = self.rebase_states.resolve_target(target)
        session = self.load_session()
        reset_todo = editor_command("reset-todo", "--states-dir", str(self.paths.rebase_states))
        snapshot = self.rebase_states.restore(step, gm, session, reset_todo)
        self.save_session(session)
        return snapshot

    def continue_rewrite(self) -> RewriteStatus:
        gm = self.git_manager
        if not gm.is_rebase_in_progress():
            raise RebaseError("No rebase in progress")
        success, conflicts = gm.continue_rebase()
        return self._status_after(success, conflicts)

    def abort(self) -> RewriteStatus:
        """Abort the rewrite and verify HEAD is back where it started."""
        gm = self.git_manager
        if not gm.is_rebase_in_progress():
            raise RebaseError("No rebase in progress")

        session = self.load_session()
        expected = gm.orig_head() or session.orig_head
        try:
            gm.abort_rebase()
        except GitRepositoryError as e:
            raise RewriteAbortFailure(
                f"Failed to abort rewrite: {e}",
                head=gm.try_rev_parse("HEAD"),
                status=gm.status_summary(),
            ) from e

        head = gm.try_rev_parse("HEAD")
        if expected and head != expected:
            raise RewriteAbortFailure(
                f"HEAD is at {(head or '?')[:8]} instead of {expected[:8]} after abort",
                head=head,
                status=gm.status_summary(),
            )

        session.clear_rewrite()
        session.submodule_cwd = None
        self.save_session(session)
        self.step_map.dispose()
        logger.info("Rewrite aborted")
        return RewriteStatus.ABORTED

    def update_dependencies(
        self,
        overrides: Optional[Dict[str, str]] = None,
        render_callback: Optional[Callable[[], None]] = None,
        manifest: str = DEFAULT_MANIFEST,
    ) -> RewriteStatus:
        """Replay every step that touched the manifest, merging its conflicts."""
        touched = self.history.steps_touching(manifest)
        numbered = [n for n in touched if n != steps.ROOT]
        if not touched:
            logger.info(f"No step touched {manifest}; nothing to update")
            return RewriteStatus.NOT_STARTED

        selected = list(touched)
        if numbered:
            # Super-steps from there on re-render manuals that may show the manifest
            lowest = min(steps.step_sort_key(n)[1] for n in numbered)
            for number in self.history.all_steps():
                if number != steps.ROOT and "." not in number and int(number) >= lowest:
                    selected.append(number)

        status = self.edit(selected, renumber=False)
        if status is RewriteStatus.COMPLETED:
            return status

        resolver = ConflictResolver(self.git_manager, manifest, storage=self.storage)
        resolver.run(overrides or {}, render_callback)
        return self._status_after(True, [])

    # --- Reporting ---
    def show(self, step: str, *args: str) -> str:
        """`git show` output for the commit of a step."""
        number = self.history.resolve_selector(step)
        return self.git_manager.show(self.history.step_hash(number), *args)

    def pause_message(self) -> str:
        """Where the rewrite stopped and the commands to go on from there."""
        position = self.git_manager.log("-1", "--format=%h...  %s").strip()
        return (
            f"Stopped at {position}\n"
            "You can amend the commit now, with\n\n"
            "  git commit --amend\n\n"
            "Once you are satisfied with your changes, run\n\n"
            "  git rebase --continue\n\n"
            "To give up and restore the original history, run\n\n"
            "  git rebase --abort"
        )

    def get_status(self) -> Dict[str, str]:
        gm = self.git_manager
        rebasing = gm.is_rebase_in_progress()
        pauses = self.rebase_states.list_pauses() if rebasing else []
        paused_at = self.rebase_states.current_step() if rebasing else None
        return {
            "branch": gm.get_current_branch(),
            "current_step": self.history.current_step(),
            "current_super_step": self.history.current_super_step(),
            "next_step": self.history.next_step(),
            "rebasing": str(rebasing),
            "paused_at": paused_at or "-",
            "previous_pauses": ", ".join(pauses) or "-",
            "step_map": self.step_map.state().value,
        }

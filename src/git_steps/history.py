"""
Read-only queries over the step history of a repository.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from . import step as steps
from .git_manager import GitManager
from .models import StepDescriptor, StepNotFound


logger = logging.getLogger(__name__)


class StepHistory:
    """Point-in-time projections of the commit log onto steps."""

    def __init__(self, git_manager: GitManager) -> None:
        self.gm = git_manager

    # --- Recent commits ---
    def recent_step_commit(self, offset: int = 0, fmt: str = "%s") -> Optional[str]:
        return self.gm.recent_commit(offset, fmt, steps.ANY_STEP_GREP)

    def recent_super_step_commit(self, offset: int = 0, fmt: str = "%s") -> Optional[str]:
        return self.gm.recent_commit(offset, fmt, steps.SUPER_STEP_GREP)

    def recent_sub_step_commit(self, offset: int = 0, fmt: str = "%s") -> Optional[str]:
        return self.gm.recent_commit(offset, fmt, steps.SUB_STEP_GREP)

    def recent_step(self, offset: int = 0) -> Optional[StepDescriptor]:
        subject = self.recent_step_commit(offset)
        return steps.parse(subject) if subject else None

    def head_step(self) -> Optional[StepDescriptor]:
        """Descriptor of HEAD itself, or None if HEAD is not a step."""
        subject = self.gm.get_commit_subject("HEAD")
        return steps.parse(subject) if subject else None

    def current_step(self) -> str:
        descriptor = self.recent_step()
        return descriptor.number if descriptor else steps.ROOT

    def current_super_step(self) -> str:
        subject = self.recent_super_step_commit()
        descriptor = steps.parse(subject) if subject else None
        return descriptor.number if descriptor else steps.ROOT

    # --- Numbering ---
    def next_step(self, offset: int = 0) -> str:
        """Number of the step that follows the one at `offset` commits back.

        With an offset, the step one commit closer to HEAD decides whether
        the result is promoted to a super-step.
        """
        current = self.recent_step(offset)
        if current is None or not offset:
            return steps.next_step_number(current)
        return steps.next_step_number(current, self.recent_step(offset - 1))

    def next_super_step(self, offset: int = 0) -> str:
        return steps.super_of(self.next_step(offset))

    # --- Listing and resolution ---
    def all_steps(self) -> List[str]:
        """All step numbers from root to HEAD in chronological order."""
        output = self.gm.log("--format=%s", "--extended-regexp", f"--grep={steps.ANY_STEP_GREP}")
        numbers = []
        for subject in output.splitlines():
            descriptor = steps.parse(subject)
            if descriptor:
                numbers.append(descriptor.number)
        numbers.reverse()
        return [steps.ROOT] + numbers

    def step_hash(self, number: str) -> str:
        """Return the hash of the commit labelled with `number`."""
        if number == steps.ROOT:
            return self.gm.root_hash()
        grep = "^Step " + re.escape(number) + ":"
        found = self.gm.recent_commit("HEAD", "%H", grep)
        if not found:
            raise StepNotFound(f"Step {number} not found")
        return found

    def step_base(self, number: Optional[str] = None) -> str:
        """Rebase base for a step: `--root` for root, else the parent commit."""
        if number is None:
            descriptor = self.recent_step()
            if descriptor is None:
                return "--root"
            number = descriptor.number
        if number == steps.ROOT:
            return "--root"
        return f"{self.step_hash(number)}~1"

    def resolve_selector(self, selector: str) -> str:
        """Map a step number, `root` or any ref to a step number."""
        if selector == steps.ROOT or steps.is_step_number(selector):
            return selector

        commit = self.gm.try_rev_parse(selector)
        if commit is None:
            raise StepNotFound(f"Step {selector} not found")
        if commit == self.gm.root_hash():
            return steps.ROOT

        subject = self.gm.get_commit_subject(commit)
        descriptor = steps.parse(subject) if subject else None
        if descriptor is None:
            raise StepNotFound(f"Commit {selector} is not a step")
        return descriptor.number

    def steps_touching(self, path: str) -> List[str]:
        """Steps, root included, whose commits changed `path`."""
        output = self.gm.log("--format=%H %s", "--", path)
        root = self.gm.root_hash()
        touched = []
        for line in output.splitlines():
            commit, _, subject = line.partition(" ")
            if commit == root:
                touched.append(steps.ROOT)
                continue
            descriptor = steps.parse(subject)
            if descriptor:
                touched.append(descriptor.number)
        return steps.sort_steps(touched)

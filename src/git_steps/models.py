"""
Data models and error taxonomy for the tutorial step engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class StepKind(Enum):
    """Whether a step is a super-step (``N``) or a sub-step (``N.M``)."""

    SUPER = "super"
    SUB = "sub"


@dataclass(frozen=True)
class StepDescriptor:
    """A view over a commit subject of the form ``Step <number>: <message>``."""

    number: str
    message: str
    kind: StepKind

    @property
    def super_number(self) -> int:
        return int(self.number.split(".")[0])

    @property
    def sub_number(self) -> Optional[int]:
        parts = self.number.split(".")
        return int(parts[1]) if len(parts) > 1 else None

    @property
    def is_super(self) -> bool:
        return self.kind is StepKind.SUPER


class RewriteStatus(Enum):
    """State a history rewrite was left in after an orchestrator call."""

    NOT_STARTED = "not_started"
    PAUSED = "paused"
    CONFLICTED = "conflicted"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RebaseSnapshot:
    """One pause point recorded in the rebase-states repository."""

    step: str
    head: str
    todo: str
    old_step: Optional[str] = None
    new_step: Optional[str] = None
    commit: Optional[str] = None


@dataclass
class ConflictRecord:
    """Both sides of a conflicted manifest, parsed into documents."""

    path: Path
    head: Dict[str, object] = field(default_factory=dict)
    current: Dict[str, object] = field(default_factory=dict)


class RebaseError(Exception):
    """Base exception for step and rebase operations."""

    pass


class GitRepositoryError(RebaseError):
    """Exception raised for Git repository related errors."""

    pass


class MalformedStep(RebaseError):
    """A value is neither a step number nor an accepted step selector."""

    pass


class StepNotFound(RebaseError):
    """A step selector did not resolve to an existing step commit."""

    pass


class RootRemovalError(RebaseError):
    """Raised when trying to pop the root commit."""

    pass


class NoPreviousSteps(RebaseError):
    """Step back was requested but no earlier pause was recorded."""

    pass


class StepNotEdited(RebaseError):
    """Step back target was never paused at during the current rewrite."""

    pass


class UnexpectedConflict(RebaseError):
    """A conflict touched files other than the tracked manifest."""

    def __init__(self, message: str, modified_files: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.modified_files = list(modified_files or [])


class RewriteAbortFailure(RebaseError):
    """Aborting a rewrite failed; carries what the repository looks like now."""

    def __init__(self, message: str, head: Optional[str] = None, status: str = "") -> None:
        super().__init__(message)
        self.head = head
        self.status = status


class ConflictResolutionError(RebaseError):
    """Exception raised during conflict resolution."""

    pass

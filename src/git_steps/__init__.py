"""
Git Steps - author tutorials as a git history of numbered step commits.

Each commit is a step (`Step 1.2: message`); sub-steps group under
super-steps, and the history can be edited, renumbered and reworded
through interactive rebases driven by this package.
"""

__version__ = "0.1.0"

from .rebase_orchestrator import RebaseOrchestrator
from .models import StepDescriptor, StepKind, RebaseSnapshot, RewriteStatus, RebaseError
from .git_manager import GitManager
from .history import StepHistory
from .conflict_resolver import ConflictResolver

__all__ = [
    "RebaseOrchestrator",
    "StepDescriptor",
    "StepKind",
    "RebaseSnapshot",
    "RewriteStatus",
    "RebaseError",
    "GitManager",
    "StepHistory",
    "ConflictResolver",
]

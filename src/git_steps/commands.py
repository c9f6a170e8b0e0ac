"""
Shell command lines handed to git for the out-of-process parts of a rebase.

git runs GIT_SEQUENCE_EDITOR and `exec` todo lines through the shell, so each
command re-invokes this package's modules with the current interpreter.
"""

from __future__ import annotations

import shlex
import sys
from typing import List


EDITOR_MODULE = "git_steps.editor"
TASKS_MODULE = "git_steps.rebase_tasks"
CLI_MODULE = "git_steps.cli"

# Set for a project whose manuals reference the steps of the repository at this path
SUBMODULE_CWD_ENV = "GIT_STEPS_SUBMODULE_CWD"


def python_command(module: str, *args: str) -> str:
    parts: List[str] = [sys.executable, "-m", module, *args]
    return " ".join(shlex.quote(p) for p in parts)


def editor_command(mode: str, *args: str) -> str:
    """Sequence editor invocation; git appends the todo path."""
    return python_command(EDITOR_MODULE, mode, *args)


def task_command(task: str, *args: str) -> str:
    """Command for an `exec` line of the rebase todo."""
    return python_command(TASKS_MODULE, task, *args)

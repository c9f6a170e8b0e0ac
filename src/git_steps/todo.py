"""
Reading and writing git-rebase-todo instruction lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from . import step as steps
from .models import StepDescriptor


class TodoCommand(Enum):
    """Rebase todo commands the step engine reads or emits."""

    PICK = "pick"
    REWORD = "reword"
    EDIT = "edit"
    SQUASH = "squash"
    FIXUP = "fixup"
    EXEC = "exec"
    BREAK = "break"
    DROP = "drop"

    @classmethod
    def from_string(cls, s: str) -> TodoCommand:
        s = s.lower()
        abbreviations = {
            "p": cls.PICK,
            "r": cls.REWORD,
            "e": cls.EDIT,
            "s": cls.SQUASH,
            "f": cls.FIXUP,
            "x": cls.EXEC,
            "b": cls.BREAK,
            "d": cls.DROP,
        }
        if s in abbreviations:
            return abbreviations[s]
        try:
            return cls(s)
        except ValueError:
            raise ValueError(f"Unknown rebase command: {s}")


_COMMIT_COMMANDS = (
    TodoCommand.PICK,
    TodoCommand.REWORD,
    TodoCommand.EDIT,
    TodoCommand.SQUASH,
    TodoCommand.FIXUP,
    TodoCommand.DROP,
)


@dataclass
class TodoEntry:
    """A single instruction of a rebase todo list."""

    command: TodoCommand
    commit: Optional[str] = None
    subject: Optional[str] = None
    arguments: Optional[str] = None

    @classmethod
    def from_string(cls, line: str) -> Optional[TodoEntry]:
        """Parse one todo line; comments and blank lines yield None."""
        line = line.strip()
        if not line or line.startswith("#"):
            return None

        parts = line.split(None, 1)
        command = TodoCommand.from_string(parts[0])
        rest = parts[1] if len(parts) > 1 else ""

        if command is TodoCommand.EXEC:
            return cls(command=command, arguments=rest)
        if command in _COMMIT_COMMANDS:
            commit, _, subject = rest.partition(" ")
            subject = subject.strip()
            # Newer git versions comment out the subject
            if subject.startswith("# "):
                subject = subject[2:]
            return cls(command=command, commit=commit, subject=subject)
        return cls(command=command, arguments=rest or None)

    def to_string(self) -> str:
        if self.command is TodoCommand.EXEC:
            return f"exec {self.arguments}"
        if self.commit:
            return f"{self.command.value} {self.commit} {self.subject or ''}".rstrip()
        if self.arguments:
            return f"{self.command.value} {self.arguments}"
        return self.command.value

    @property
    def step(self) -> Optional[StepDescriptor]:
        if not self.commit or self.subject is None:
            return None
        return steps.parse(self.subject)

    @classmethod
    def exec_line(cls, command: str) -> TodoEntry:
        return cls(command=TodoCommand.EXEC, arguments=command)


def parse_todo(text: str) -> List[TodoEntry]:
    entries = []
    for line in text.splitlines():
        entry = TodoEntry.from_string(line)
        if entry is not None:
            entries.append(entry)
    return entries


def format_todo(entries: List[TodoEntry]) -> str:
    return "".join(entry.to_string() + "\n" for entry in entries)

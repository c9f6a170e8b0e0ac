"""
UI-agnostic prompt interface for user interactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional


class UserPrompt(ABC):
    """Abstract interface for prompting users for decisions."""

    @abstractmethod
    def choose_step_back(self, pauses: List[str]) -> Optional[str]:
        """
        Ask which earlier pause to go back to.

        Args:
            pauses: Steps paused at before the current one, most recent first

        Returns:
            The chosen step, or None to cancel
        """
        pass

    @abstractmethod
    def ask_message(self, step: str, default: Optional[str] = None) -> Optional[str]:
        """
        Ask for a step message when none was given on the command line.

        Args:
            step: The step number the message is for
            default: Current message, if any

        Returns:
            The message, or None to cancel
        """
        pass

    @abstractmethod
    def show_pause(self, message: str) -> None:
        """Show where a rewrite stopped and how to go on from there."""
        pass


class NoOpPrompt(UserPrompt):
    """No-operation prompt that always returns safe defaults."""

    def choose_step_back(self, pauses: List[str]) -> Optional[str]:
        return pauses[0] if pauses else None

    def ask_message(self, step: str, default: Optional[str] = None) -> Optional[str]:
        return default

    def show_pause(self, message: str) -> None:
        pass

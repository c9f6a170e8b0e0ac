"""
CLI-specific implementation of the prompt interface.
"""

from __future__ import annotations

from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel

from .prompt_interface import UserPrompt


class CliPrompt(UserPrompt):
    """CLI implementation of the prompt interface using click and rich."""

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def choose_step_back(self, pauses: List[str]) -> Optional[str]:
        """List earlier pauses and let the user pick one."""
        if not pauses:
            return None

        self.console.print("\n⏪ **Which step would you like to go back to?**", style="bold blue")
        for i, step in enumerate(pauses, 1):
            self.console.print(f"  {i}. Step {step}")

        choices = [str(i) for i in range(1, len(pauses) + 1)]
        choice = click.prompt(
            "Choose a step",
            type=click.Choice(choices),
            default="1",
            show_choices=False,
        )
        return pauses[int(choice) - 1]

    def ask_message(self, step: str, default: Optional[str] = None) -> Optional[str]:
        """Prompt for the message of a step."""
        message = click.prompt(f"Message for step {step}", default=default or "", show_default=bool(default))
        message = message.strip()
        return message or None

    def show_pause(self, message: str) -> None:
        panel = Panel(
            message,
            title="Rewrite Paused",
            border_style="yellow",
        )
        self.console.print(panel)

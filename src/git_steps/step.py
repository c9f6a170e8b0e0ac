"""
Step identity: parsing, formatting, ordering and numbering of step commits.

A step commit carries a subject of the form ``Step <super>[.<sub>]: <text>``.
Everything the engine knows about a step is derived from that line.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from .models import MalformedStep, StepDescriptor, StepKind


ROOT = "root"

STEP_PATTERN = re.compile(r"^Step (\d+(?:\.\d+)?): ((?:.|\n)*)$")
STEP_NUMBER_PATTERN = re.compile(r"^\d{1,5}(?:\.\d+)?$")
MULTIPLIER_PATTERN = re.compile(r"^x(\d+)$")

# Extended regular expressions for `git log --extended-regexp --grep`
ANY_STEP_GREP = r"^Step [0-9]+"
SUPER_STEP_GREP = r"^Step [0-9]+:"
SUB_STEP_GREP = r"^Step [0-9]+\.[0-9]+:"


def parse(message: Optional[str]) -> Optional[StepDescriptor]:
    """Parse a commit subject into a StepDescriptor.

    Returns None when the subject is not a step. A missing message is a
    programming error and raises TypeError.
    """
    if message is None:
        raise TypeError("A message must be provided")

    match = STEP_PATTERN.match(message)
    if not match:
        return None

    number = match.group(1)
    kind = StepKind.SUB if "." in number else StepKind.SUPER
    return StepDescriptor(number=number, message=match.group(2), kind=kind)


def format_step(number: str, message: str) -> str:
    return f"Step {number}: {message}"


def format_message(descriptor: StepDescriptor) -> str:
    """Inverse of parse() for well-formed descriptors."""
    return format_step(descriptor.number, descriptor.message)


def is_step_number(value: object) -> bool:
    return isinstance(value, str) and bool(STEP_NUMBER_PATTERN.match(value))


def assert_step(value: object) -> str:
    """Return value as a step number or raise MalformedStep."""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not is_step_number(value):
        raise MalformedStep(f"Provided argument is not a step: {value!r}")
    return value  # type: ignore[return-value]


def step_sort_key(number: str) -> Tuple[int, int, int]:
    """Total order key: root first, then (super, sub or 0)."""
    if number == ROOT:
        return (0, 0, 0)
    parts = number.split(".")
    sub = int(parts[1]) if len(parts) > 1 else 0
    return (1, int(parts[0]), sub)


def sort_steps(numbers: Iterable[str]) -> List[str]:
    """Deduplicate and sort step numbers, root pinned first."""
    return sorted(set(numbers), key=step_sort_key)


def super_of(number: str) -> str:
    return number.split(".")[0]


def next_step_number(
    current: Optional[StepDescriptor], lookahead: Optional[StepDescriptor] = None
) -> str:
    """Compute the step number that follows `current`.

    `current` is the most recent step at the inspected position and
    `lookahead` is the step commit right after it, when the caller inspects
    history with an offset. A super-step lookahead means the following commit
    closes a super-step, so the result is promoted to a super number.
    """
    if current is None:
        return "1.1"

    super_number = current.super_number
    sub_number = current.sub_number

    if lookahead is None or not lookahead.is_super:
        if current.is_super:
            return f"{super_number + 1}.1"
        return f"{super_number}.{sub_number + 1}"

    if current.is_super:
        return str(super_number + 1)
    return str(super_number)

"""
Step map: translation table from old step numbers to new ones.

A map is built before a renumbering rewrite, updated by every renumbered or
removed step, and read by another project's rewrite to fix step references
embedded in its manuals.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from . import step as steps
from .git_manager import GitManager
from .history import StepHistory
from .storage import STEP_MAP, STEP_MAP_PENDING, LocalStorage


logger = logging.getLogger(__name__)


class StepMapState(Enum):
    """Lifecycle of a step map: absent -> pending -> committed."""

    ABSENT = "absent"
    PENDING = "pending"
    COMMITTED = "committed"


class StepMapStore:
    """Persisted step map scoped to one project."""

    def __init__(self, storage: LocalStorage, history: Optional[StepHistory] = None) -> None:
        self.storage = storage
        self.history = history

    @classmethod
    def for_project(cls, cwd: Path) -> StepMapStore:
        """Open the step map of another project, e.g. a submodule root."""
        gm = GitManager(Path(cwd))
        return cls(LocalStorage.for_project(gm.working_dir), StepHistory(gm))

    def state(self) -> StepMapState:
        if not self.storage.has_item(STEP_MAP):
            return StepMapState.ABSENT
        if self.storage.has_item(STEP_MAP_PENDING):
            return StepMapState.PENDING
        return StepMapState.COMMITTED

    def exists(self) -> bool:
        return self.state() is not StepMapState.ABSENT

    def initialize(self, pending: bool = False) -> Dict[str, str]:
        """Create an identity map over every step in the history."""
        if self.history is None:
            raise ValueError("A step history is required to initialize the step map")
        numbers = [n for n in self.history.all_steps() if n != steps.ROOT]
        mapping = {n: n for n in numbers}
        self._write(mapping)
        if pending:
            self.storage.set_item(STEP_MAP_PENDING, "true")
        else:
            self.storage.remove_item(STEP_MAP_PENDING)
        logger.info(f"Initialized step map with {len(mapping)} steps (pending={pending})")
        return mapping

    def get(self, require_committed: bool = False) -> Optional[Dict[str, str]]:
        """Return the map, or None if absent (or still pending when required)."""
        state = self.state()
        if state is StepMapState.ABSENT:
            return None
        if require_committed and state is StepMapState.PENDING:
            logger.debug("Step map is still pending; not using it")
            return None
        return json.loads(self.storage.get_item(STEP_MAP) or "{}")

    def commit(self) -> None:
        self.storage.remove_item(STEP_MAP_PENDING)

    def dispose(self) -> None:
        self.storage.remove_item(STEP_MAP)
        self.storage.remove_item(STEP_MAP_PENDING)

    def update_remove(self, step: str) -> None:
        mapping = self.get() or {}
        mapping.pop(step, None)
        self._write(mapping)

    def update_reset(self, old_step: str, new_step: str) -> None:
        mapping = self.get() or {}
        mapping[old_step] = new_step
        self._write(mapping)

    def _write(self, mapping: Dict[str, str]) -> None:
        self.storage.set_item(STEP_MAP, json.dumps(mapping))

"""
Filesystem locations used by the step engine for one project.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .git_manager import GitManager


@dataclass(frozen=True)
class ProjectPaths:
    """Resolved paths for a repository (or a submodule's repository)."""

    root: Path
    git_dir: Path

    @classmethod
    def resolve(cls, cwd: Optional[Path] = None) -> ProjectPaths:
        gm = GitManager(cwd)
        return cls(root=gm.working_dir, git_dir=gm.git_dir)

    @property
    def steps_dir(self) -> Path:
        return self.git_dir / "steps"

    @property
    def storage(self) -> Path:
        return self.steps_dir / "storage"

    @property
    def rebase_states(self) -> Path:
        return self.steps_dir / "rebase-states"

    @property
    def manual_templates(self) -> Path:
        return self.root / "manuals" / "templates"

    @property
    def manual_views(self) -> Path:
        return self.root / "manuals" / "views"

    def manual_template(self, super_step: str) -> Path:
        return self.manual_templates / f"step{super_step}.tmpl"

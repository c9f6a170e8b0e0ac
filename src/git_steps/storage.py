"""
Small key-value storage for session variables shared between processes.

Every key is one file under the project's private storage directory. The
sequence editor and the rebase tasks run as separate processes, so this
directory is the only place they can hand state to each other.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from tempfile import mkstemp
from typing import Optional

from .paths import ProjectPaths


logger = logging.getLogger(__name__)


HOOK_STEP = "HOOK_STEP"
REBASE_OLD_STEP = "REBASE_OLD_STEP"
REBASE_NEW_STEP = "REBASE_NEW_STEP"
REBASE_ORIG_HEAD = "REBASE_ORIG_HEAD"
SUBMODULE_CWD = "SUBMODULE_CWD"
REBASE_HOOKS_DISABLED = "REBASE_HOOKS_DISABLED"
STEP_MAP = "STEP_MAP"
STEP_MAP_PENDING = "STEP_MAP_PENDING"


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = mkstemp(suffix=path.suffix, prefix=path.name + ".tmp", dir=path.parent)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class LocalStorage:
    """File-per-key storage rooted at a directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    @classmethod
    def for_project(cls, cwd: Optional[Path] = None) -> LocalStorage:
        return cls(ProjectPaths.resolve(cwd).storage)

    def _path(self, key: str) -> Path:
        return self.directory / key

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: object) -> None:
        atomic_write_text(self._path(key), str(value))
        logger.debug(f"Stored {key} in {self.directory}")

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def has_item(self, key: str) -> bool:
        return self._path(key).is_file()


@dataclass
class SessionState:
    """Session variables threaded through one orchestrator call.

    Loaded at the start of an operation and saved whenever a rewrite is
    launched or paused. None means the variable is unset.
    """

    hook_step: Optional[str] = None
    old_step: Optional[str] = None
    new_step: Optional[str] = None
    orig_head: Optional[str] = None
    submodule_cwd: Optional[str] = None
    hooks_disabled: bool = False

    _KEYS = (
        ("hook_step", HOOK_STEP),
        ("old_step", REBASE_OLD_STEP),
        ("new_step", REBASE_NEW_STEP),
        ("orig_head", REBASE_ORIG_HEAD),
        ("submodule_cwd", SUBMODULE_CWD),
    )

    @classmethod
    def load(cls, storage: LocalStorage) -> SessionState:
        values = {attr: storage.get_item(key) for attr, key in cls._KEYS}
        return cls(hooks_disabled=storage.has_item(REBASE_HOOKS_DISABLED), **values)

    def save(self, storage: LocalStorage) -> None:
        for attr, key in self._KEYS:
            value = getattr(self, attr)
            if value is None:
                storage.remove_item(key)
            else:
                storage.set_item(key, value)
        if self.hooks_disabled:
            storage.set_item(REBASE_HOOKS_DISABLED, "true")
        else:
            storage.remove_item(REBASE_HOOKS_DISABLED)

    def clear_rewrite(self) -> None:
        """Forget the variables that only make sense during a rewrite."""
        self.old_step = None
        self.new_step = None
        self.orig_head = None
        self.hooks_disabled = False

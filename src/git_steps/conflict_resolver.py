"""
Automatic resolution of manifest conflicts while replaying steps.

Replaying a tutorial after bumping a dependency conflicts in the manifest at
nearly every step. Those conflicts are confined to a few dependency
sections, so they can be merged mechanically: versions already applied on
HEAD win over the replayed commit, and explicit overrides win over both.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .git_manager import GitManager
from .history import StepHistory
from .models import ConflictRecord, ConflictResolutionError, UnexpectedConflict
from .storage import REBASE_HOOKS_DISABLED, LocalStorage


logger = logging.getLogger(__name__)


DEFAULT_MANIFEST = "package.json"
DEFAULT_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")
DEFAULT_INDENT = "  "

CONFLICT_PATTERN = re.compile(
    r"<<<<<<< [^\n]*\n(.*?)(?:\|\|\|\|\|\|\| [^\n]*\n.*?)?=======\n(.*?)>>>>>>> [^\n]*\n?",
    re.DOTALL,
)
INDENT_PATTERN = re.compile(r"\{\n([^\"]+)")


def split_conflict(text: str) -> Tuple[str, str]:
    """Return the (head, current) versions of a file with conflict markers.

    Text without markers yields the same content twice.
    """
    return CONFLICT_PATTERN.sub(r"\1", text), CONFLICT_PATTERN.sub(r"\2", text)


def sniff_indent(text: str) -> str:
    match = INDENT_PATTERN.search(text)
    return match.group(1) if match else DEFAULT_INDENT


def merge_sections(
    head: Dict[str, object],
    current: Dict[str, object],
    sections: Sequence[str] = DEFAULT_SECTIONS,
) -> Dict[str, object]:
    """Copy head's versions into current for entries current already has."""
    merged = json.loads(json.dumps(current))
    for section in sections:
        head_deps = head.get(section)
        current_deps = merged.get(section)
        if not isinstance(head_deps, dict) or not isinstance(current_deps, dict):
            continue
        for name, version in head_deps.items():
            if name in current_deps:
                current_deps[name] = version
    return merged


def apply_overrides(
    document: Dict[str, object],
    overrides: Dict[str, str],
    sections: Sequence[str] = DEFAULT_SECTIONS,
) -> Dict[str, object]:
    """Set each overridden entry in every section that already contains it."""
    for section in sections:
        deps = document.get(section)
        if not isinstance(deps, dict):
            continue
        for name, version in overrides.items():
            if name in deps:
                deps[name] = version
    return document


def merge_manifests(
    head: Dict[str, object],
    current: Dict[str, object],
    overrides: Optional[Dict[str, str]] = None,
    sections: Sequence[str] = DEFAULT_SECTIONS,
) -> Dict[str, object]:
    merged = merge_sections(head, current, sections) if head != current else json.loads(json.dumps(current))
    return apply_overrides(merged, overrides or {}, sections)


class ConflictResolver:
    """Resolves manifest conflicts and drives the rebase until it finishes."""

    def __init__(
        self,
        git_manager: GitManager,
        manifest: str = DEFAULT_MANIFEST,
        sections: Sequence[str] = DEFAULT_SECTIONS,
        storage: Optional[LocalStorage] = None,
    ) -> None:
        self.git_manager = git_manager
        self.history = StepHistory(git_manager)
        self.manifest = manifest
        self.sections = tuple(sections)
        self.storage = storage

    @property
    def manifest_path(self) -> Path:
        return self.git_manager.working_dir / self.manifest

    def read_conflict(self) -> ConflictRecord:
        text = self.manifest_path.read_text(encoding="utf-8")
        head_text, current_text = split_conflict(text)
        try:
            return ConflictRecord(
                path=self.manifest_path,
                head=json.loads(head_text),
                current=json.loads(current_text),
            )
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse {self.manifest} while resolving: {e}")
            raise ConflictResolutionError(f"Could not parse {self.manifest}: {e}") from e

    def resolve_file(self, overrides: Optional[Dict[str, str]] = None) -> Optional[Dict[str, object]]:
        """Merge both sides of the manifest, write it back and stage it."""
        if not self.manifest_path.exists():
            logger.debug(f"{self.manifest} does not exist at this step; skipping")
            return None

        text = self.manifest_path.read_text(encoding="utf-8")
        indent = sniff_indent(text)
        record = self.read_conflict()
        merged = merge_manifests(record.head, record.current, overrides, self.sections)

        output = json.dumps(merged, indent=indent, ensure_ascii=False)
        if text.endswith("\n"):
            output += "\n"
        self.manifest_path.write_text(output, encoding="utf-8")
        self.git_manager.add_paths([self.manifest])
        logger.info(f"Resolved {self.manifest} at {self.git_manager.get_commit_subject('HEAD')}")
        return merged

    def is_recoverable(self, modified_files: List[str]) -> bool:
        """True when the only modified path is the tracked manifest."""
        return bool(modified_files) and all(f == self.manifest for f in modified_files)

    def run(
        self,
        overrides: Optional[Dict[str, str]] = None,
        render_callback: Optional[Callable[[], None]] = None,
    ) -> int:
        """Resolve and continue until the rebase completes.

        Returns the number of resolution rounds. Bounded by the number of
        instructions left when the loop starts.
        """
        gm = self.git_manager
        remaining = len(gm.remaining_todo()) + 1
        rounds = 0
        previous_flag = self.storage.get_item(REBASE_HOOKS_DISABLED) if self.storage else None

        try:
            if self.storage:
                self.storage.set_item(REBASE_HOOKS_DISABLED, "1")

            while gm.is_rebase_in_progress():
                if rounds >= remaining:
                    raise ConflictResolutionError(
                        f"Rebase did not complete after {rounds} resolution rounds"
                    )
                rounds += 1

                self.resolve_file(overrides)

                head_step = self.history.head_step()
                # Staged files mean the conflict belongs to the following step
                if render_callback and head_step and head_step.is_super and not gm.get_staged_files():
                    render_callback()

                success, _ = gm.continue_rebase()
                if success:
                    continue

                modified = gm.get_modified_files()
                if not self.is_recoverable(modified):
                    detail = ", ".join(modified) or f"rebase stopped\n{gm.status_summary()}"
                    raise UnexpectedConflict(f"Conflict outside {self.manifest}: {detail}", modified)
                logger.info(f"Recoverable {self.manifest} conflict; resolving again")
        finally:
            if self.storage:
                if previous_flag:
                    self.storage.set_item(REBASE_HOOKS_DISABLED, previous_flag)
                else:
                    self.storage.remove_item(REBASE_HOOKS_DISABLED)

        return rounds

"""
Git repository management and operations.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from git import Repo, InvalidGitRepositoryError
from git.exc import GitCommandError

from .models import GitRepositoryError


logger = logging.getLogger(__name__)


class GitManager:
    """Manages Git operations for a tutorial repository."""

    def __init__(self, repo_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> None:
        """Initialize Git manager with optional repository path.

        `env` pins extra environment variables for every git invocation, which
        is how the rebase-states repository is kept apart from an outer rebase.
        """
        self.repo_path = (repo_path or Path.cwd()).resolve()
        self.env = dict(env or {})
        self._repo: Optional[Repo] = None

    @classmethod
    def from_repo(cls, repo: Repo, env: Optional[Dict[str, str]] = None) -> GitManager:
        """Wrap an already opened repository without discovery."""
        gm = cls(Path(repo.working_dir), env)
        gm._repo = repo
        if gm.env:
            repo.git.update_environment(**gm.env)
        return gm

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            self._repo = self._discover_repository()
            if self.env:
                self._repo.git.update_environment(**self.env)
        return self._repo

    def _discover_repository(self) -> Repo:
        """Discover the Git repository from current or specified path."""
        search_path = self.repo_path

        logger.debug(f"Discovering repository in: {search_path}")
        # Walk up the directory tree to find a Git repository
        while search_path != search_path.parent:
            try:
                repo = Repo(search_path)
                logger.debug(f"Found Git repository at: {search_path}")
                return repo
            except InvalidGitRepositoryError:
                search_path = search_path.parent

        try:
            return Repo(self.repo_path)
        except InvalidGitRepositoryError as e:
            raise GitRepositoryError(
                f"No Git repository found at {self.repo_path} or any parent directory"
            ) from e

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_dir).resolve()

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir).resolve()

    # --- Revision queries ---
    def rev_parse(self, ref: str, short: bool = False) -> str:
        """Resolve a ref to a commit hash."""
        try:
            args = ["--short", ref] if short else [ref]
            return self.repo.git.rev_parse(*args).strip()
        except GitCommandError as e:
            logger.error(f"Failed to resolve {ref}: {e}")
            raise GitRepositoryError(f"Failed to resolve {ref}: {e}") from e

    def try_rev_parse(self, ref: str) -> Optional[str]:
        """Resolve a ref to a commit hash, or None if it does not exist."""
        try:
            value = self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}").strip()
            return value or None
        except GitCommandError:
            return None

    def head_hash(self) -> str:
        return self.rev_parse("HEAD")

    def root_hash(self) -> str:
        """Return the hash of the first commit reachable from HEAD."""
        try:
            output = self.repo.git.rev_list("--max-parents=0", "HEAD")
        except GitCommandError as e:
            logger.error(f"Failed to find root commit: {e}")
            raise GitRepositoryError(f"Failed to find root commit: {e}") from e
        roots = [ln.strip() for ln in output.splitlines() if ln.strip()]
        if not roots:
            raise GitRepositoryError("Repository has no commits")
        return roots[-1]

    def log(self, *args: str) -> str:
        """Run `git log` with the given arguments and return stdout."""
        try:
            return self.repo.git.log(*args)
        except GitCommandError as e:
            logger.error(f"git log {' '.join(args)} failed: {e}")
            raise GitRepositoryError(f"git log failed: {e}") from e

    def show(self, *args: str) -> str:
        try:
            return self.repo.git.show(*args)
        except GitCommandError as e:
            logger.error(f"git show {' '.join(args)} failed: {e}")
            raise GitRepositoryError(f"git show failed: {e}") from e

    def recent_commit(
        self,
        rev: Union[int, str] = 0,
        fmt: Optional[str] = None,
        grep: Optional[str] = None,
    ) -> Optional[str]:
        """Return `git log <rev> -1` output, or None when nothing matches.

        An integer `rev` is treated as an offset from HEAD. Offsets that walk
        past the root commit yield None rather than an error.
        """
        target = f"HEAD~{rev}" if isinstance(rev, int) else rev
        if self.try_rev_parse(target) is None:
            return None

        args = [target, "-1"]
        if fmt:
            args.append(f"--format={fmt}")
        if grep:
            args.extend(["--extended-regexp", f"--grep={grep}"])
        output = self.log(*args).strip()
        return output or None

    def get_commit_subject(self, commit_hash: str) -> Optional[str]:
        """Return the one-line subject for a commit hash."""
        try:
            output = self.repo.git.log("-1", "--format=%s", commit_hash)
            return output.strip() or None
        except GitCommandError:
            return None

    def get_commit_body(self, commit_hash: str) -> str:
        try:
            return self.repo.git.log("-1", "--format=%b", commit_hash).strip()
        except GitCommandError as e:
            logger.error(f"Failed to read body of {commit_hash}: {e}")
            raise GitRepositoryError(f"Failed to read commit {commit_hash}: {e}") from e

    # --- Branches ---
    def get_current_branch(self) -> str:
        """Get the current branch name.

        During a rebase HEAD is detached, so the branch being rebased is read
        from the rebase metadata instead.
        """
        rebase_dir = self.rebase_dir()
        head_name = rebase_dir / "head-name" if rebase_dir else None
        if head_name is not None and head_name.exists():
            ref = head_name.read_text(encoding="utf-8").strip()
            return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        try:
            return self.repo.active_branch.name
        except TypeError as e:
            logger.error(f"Error getting current branch: {e}")
            raise GitRepositoryError(f"Could not determine current branch: {e}") from e

    def list_local_branches(self) -> List[str]:
        """List local branch names (full names, including slashes)."""
        return [h.name for h in self.repo.heads]

    def branch_exists(self, branch_name: str) -> bool:
        return branch_name in self.list_local_branches()

    def create_branch(self, branch_name: str, target: str = "HEAD") -> None:
        """Create or force-update a local branch to point at target."""
        try:
            self.repo.git.branch("-f", branch_name, target)
            logger.info(f"Created branch {branch_name} -> {target}")
        except GitCommandError as e:
            logger.error(f"Error creating branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to create branch {branch_name}: {e}") from e

    def delete_branch(self, branch_name: str) -> None:
        """Delete a local branch (force)."""
        try:
            self.repo.git.branch("-D", branch_name)
            logger.info(f"Deleted branch {branch_name}")
        except GitCommandError as e:
            logger.error(f"Error deleting branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to delete branch {branch_name}: {e}") from e

    # --- Rebase state ---
    def rebase_dir(self) -> Optional[Path]:
        """Return the active rebase metadata directory, if any."""
        for name in ("rebase-merge", "rebase-apply"):
            candidate = self.git_dir / name
            if candidate.exists():
                return candidate
        return None

    def is_rebase_in_progress(self) -> bool:
        """Check if a rebase is currently in progress."""
        return self.rebase_dir() is not None

    def rebase_todo_path(self) -> Path:
        return self.git_dir / "rebase-merge" / "git-rebase-todo"

    def remaining_todo(self) -> List[str]:
        """Return the non-comment lines still pending in the rebase todo."""
        path = self.rebase_todo_path()
        if not path.exists():
            return []
        lines = path.read_text(encoding="utf-8").splitlines()
        return [ln for ln in lines if ln.strip() and not ln.lstrip().startswith("#")]

    def start_interactive_rebase(self, base: str, sequence_editor: str) -> Tuple[bool, List[Path]]:
        """Start `git rebase -i <base> --keep-empty` driven by a sequence editor.

        Returns:
            Tuple of (success, conflict_files). Success is also True when the
            rebase stopped at an `edit` or `break` instruction.
        """
        try:
            logger.debug(f"Starting rebase -i {base} with editor: {sequence_editor}")
            with self.repo.git.custom_environment(GIT_SEQUENCE_EDITOR=sequence_editor, GIT_EDITOR="true"):
                self.repo.git.rebase("-i", base, "--keep-empty")
            return True, []
        except GitCommandError as e:
            conflict_files = self.get_conflict_files()
            if conflict_files:
                logger.warning(f"Rebase has conflicts in files: {conflict_files}")
                return False, conflict_files
            if self.is_rebase_in_progress():
                logger.warning(f"Rebase stopped: {e}")
                return False, []
            logger.error(f"Rebase failed: {e}")
            raise GitRepositoryError(f"Rebase failed: {e}") from e

    def edit_todo(self, sequence_editor: str) -> None:
        """Rewrite the live todo list of the current rebase."""
        try:
            with self.repo.git.custom_environment(GIT_SEQUENCE_EDITOR=sequence_editor):
                self.repo.git.rebase("--edit-todo")
        except GitCommandError as e:
            logger.error(f"Failed to edit rebase todo: {e}")
            raise GitRepositoryError(f"Failed to edit rebase todo: {e}") from e

    def continue_rebase(self) -> Tuple[bool, List[Path]]:
        """Continue a rebase after conflicts are resolved."""
        try:
            # Avoid interactive editor prompt
            with self.repo.git.custom_environment(GIT_EDITOR="true"):
                self.repo.git.rebase("--continue")
            logger.info("Rebase continued successfully")
            return True, []
        except GitCommandError as e:
            conflict_files = self.get_conflict_files()
            if conflict_files:
                logger.warning(f"Rebase still has conflicts: {conflict_files}")
                return False, conflict_files
            if self.is_rebase_in_progress():
                logger.warning(f"Rebase stopped: {e}")
                return False, []
            logger.error(f"Rebase continue failed: {e}")
            raise GitRepositoryError(f"Rebase continue failed: {e}") from e

    def abort_rebase(self) -> None:
        """Abort a rebase operation."""
        try:
            self.repo.git.rebase("--abort")
            logger.info("Rebase aborted successfully")
        except GitCommandError as e:
            logger.error(f"Failed to abort rebase: {e}")
            raise GitRepositoryError(f"Failed to abort rebase: {e}") from e

    def orig_head(self) -> Optional[str]:
        """Return the HEAD recorded by git when the current rebase started."""
        rebase_dir = self.rebase_dir()
        if rebase_dir is None:
            return None
        orig = rebase_dir / "orig-head"
        if orig.exists():
            return orig.read_text(encoding="utf-8").strip() or None
        return None

    # --- Working tree / index ---
    def reset_hard(self, ref: str) -> None:
        try:
            self.repo.git.reset("--hard", ref)
            logger.info(f"Reset --hard to {ref}")
        except GitCommandError as e:
            logger.error(f"Failed to reset to {ref}: {e}")
            raise GitRepositoryError(f"Failed to reset to {ref}: {e}") from e

    def commit(
        self,
        message: Optional[str] = None,
        *,
        amend: bool = False,
        allow_empty: bool = False,
        reuse: Optional[str] = None,
    ) -> None:
        """Create a commit; `reuse` takes message and authorship from a commit."""
        args: List[str] = []
        if amend:
            args.append("--amend")
        if allow_empty:
            args.append("--allow-empty")
        if reuse:
            args.extend(["-C", reuse])
        if message is not None:
            args.extend(["-m", message])
        if amend and message is None and reuse is None:
            args.append("--no-edit")
        try:
            with self.repo.git.custom_environment(GIT_EDITOR="true"):
                self.repo.git.commit(*args)
            logger.info(f"Committed: {message or reuse or 'amend'}")
        except GitCommandError as e:
            logger.error(f"Commit failed: {e}")
            raise GitRepositoryError(f"Commit failed: {e}") from e

    def add_paths(self, paths: List[Union[str, Path]]) -> None:
        """Stage the given paths."""
        try:
            for p in paths:
                # The '--' ensures pathspec is not interpreted as an option
                self.repo.git.add("--", str(p))
        except GitCommandError as e:
            logger.error(f"Failed to add paths {paths} in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"Failed to stage paths: {e}") from e

    def add_all(self) -> None:
        try:
            self.repo.git.add(".")
        except GitCommandError as e:
            logger.error(f"Failed to add all in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"Failed to stage changes: {e}") from e

    def get_conflict_files(self) -> List[Path]:
        """Get list of files with merge conflicts."""
        try:
            output = self.repo.git.diff("--name-only", "--diff-filter=U")
        except GitCommandError as e:
            logger.error(f"Error getting conflict files: {e}")
            return []
        return [Path(self.repo.working_dir) / f.strip() for f in output.split("\n") if f.strip()]

    def get_staged_files(self) -> List[str]:
        """Return list of staged (cached) paths (names only)."""
        output = self.repo.git.diff("--cached", "--name-only")
        return [f.strip() for f in output.split("\n") if f.strip()]

    def get_modified_files(self) -> List[str]:
        """Return `git diff --name-only` entries as printed by git.

        Unmerged paths are listed once per conflicting stage, so a single
        conflicted file may show up more than once.
        """
        output = self.repo.git.diff("--name-only")
        return [f.strip() for f in output.split("\n") if f.strip()]

    # --- Patches ---
    def diff_patch(self, commit_hash: str) -> str:
        """Return a commit's changes as a binary-safe patch without headers."""
        try:
            patch = self.repo.git.show("--format=", "--patch", "--binary", commit_hash, strip_newline_in_stdout=False)
        except GitCommandError as e:
            logger.error(f"Failed to read patch of {commit_hash}: {e}")
            raise GitRepositoryError(f"Failed to read patch of {commit_hash}: {e}") from e
        return patch.lstrip("\n")

    def apply_patch(self, patch: str) -> None:
        """Apply a patch to both the index and the working tree."""
        if not patch.strip():
            return
        fd, tmp_name = tempfile.mkstemp(suffix=".patch")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(patch if patch.endswith("\n") else patch + "\n")
            self.repo.git.apply("--index", tmp_name)
        except GitCommandError as e:
            logger.error(f"Failed to apply patch: {e}")
            raise GitRepositoryError(f"Failed to apply patch: {e}") from e
        finally:
            os.unlink(tmp_name)

    def status_summary(self) -> str:
        """Short `git status` output for error reports."""
        try:
            return self.repo.git.status("--short", "--branch")
        except GitCommandError as e:
            logger.error(f"Failed to read status: {e}")
            return ""

"""
Shared fixtures: isolated git identity/config and throwaway step repositories.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from git import Repo


@pytest.fixture(autouse=True)
def isolated_git_env(monkeypatch, tmp_path_factory):
    """Give every test a fixed identity, empty git config and private log file."""
    home = tmp_path_factory.mktemp("home")
    global_config = home / ".gitconfig"
    global_config.write_text("[init]\n\tdefaultBranch = main\n", encoding="utf-8")

    monkeypatch.setenv("GIT_AUTHOR_NAME", "Tutorial Author")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "author@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Tutorial Author")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "author@example.com")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_STEPS_LOG", str(home / "logs" / "git-steps.log"))
    monkeypatch.delenv("GIT_STEPS_SUBMODULE_CWD", raising=False)
    for var in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(var, raising=False)


class StepRepo:
    """A real repository whose history is built one step commit at a time."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.mkdir(parents=True, exist_ok=True)
        self.repo = Repo.init(path)

    def write(self, name: str, content: str) -> Path:
        target = self.path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def write_json(self, name: str, document: Dict[str, object]) -> Path:
        return self.write(name, json.dumps(document, indent=2) + "\n")

    def commit(self, message: str, files: Optional[Dict[str, str]] = None) -> str:
        for name, content in (files or {}).items():
            self.write(name, content)
        self.repo.git.add("--all")
        self.repo.git.commit("--allow-empty", "-m", message)
        return self.head

    def step(self, number: str, message: Optional[str] = None, files: Optional[Dict[str, str]] = None) -> str:
        if files is None:
            if "." in number:
                files = {f"src/step{number}.txt": f"content of {number}\n"}
            else:
                files = {f"manuals/templates/step{number}.tmpl": f"manual {number}\n"}
        return self.commit(f"Step {number}: {message or 'step ' + number}", files)

    @property
    def head(self) -> str:
        return self.repo.git.rev_parse("HEAD")

    @property
    def branch(self) -> str:
        return self.repo.active_branch.name

    def subjects(self) -> List[str]:
        return list(reversed(self.repo.git.log("--format=%s").splitlines()))

    def numbers(self) -> List[str]:
        numbers = []
        for subject in self.subjects():
            if subject.startswith("Step "):
                numbers.append(subject.split(":", 1)[0][len("Step "):])
            else:
                numbers.append("root")
        return numbers

    def branches(self) -> List[str]:
        return sorted(head.name for head in self.repo.heads)

    def is_rebasing(self) -> bool:
        git_dir = Path(self.repo.git_dir)
        return (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists()


@pytest.fixture
def make_step_repo(tmp_path):
    """Factory for repositories holding only a root commit."""

    def build(name: str) -> StepRepo:
        sr = StepRepo(tmp_path / name)
        sr.commit("Initial commit", {"README.md": f"# {name.title()}\n"})
        return sr

    return build


@pytest.fixture
def step_repo(make_step_repo) -> StepRepo:
    """Repository holding only a root commit."""
    return make_step_repo("tutorial")

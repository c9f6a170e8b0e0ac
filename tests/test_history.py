"""
Tests for step history queries against real repositories.
"""

import pytest

from git_steps.git_manager import GitManager
from git_steps.history import StepHistory
from git_steps.models import StepNotFound


@pytest.fixture
def history_repo(step_repo):
    step_repo.step("1.1")
    step_repo.step("1.2")
    step_repo.step("1")
    step_repo.step("2.1")
    return step_repo


def history_for(sr) -> StepHistory:
    return StepHistory(GitManager(sr.path))


class TestStepHistory:
    """Projections of the log onto steps."""

    def test_empty_history(self, step_repo):
        history = history_for(step_repo)
        assert history.current_step() == "root"
        assert history.current_super_step() == "root"
        assert history.next_step() == "1.1"
        assert history.all_steps() == ["root"]

    def test_current_and_next(self, history_repo):
        history = history_for(history_repo)
        assert history.current_step() == "2.1"
        assert history.current_super_step() == "1"
        assert history.next_step() == "2.2"
        assert history.next_super_step() == "2"

    def test_next_step_with_offset_promotes_before_super(self, history_repo):
        history = history_for(history_repo)
        # One commit back is step 1; the step after it is 2.1, a sub-step
        assert history.next_step(1) == "2.1"
        # Two commits back is 1.2 and the commit after it closes super-step 1
        assert history.next_step(2) == "1"

    def test_non_step_commits_are_skipped(self, history_repo):
        history_repo.commit("wip: not a step", {"notes.txt": "x\n"})
        history = history_for(history_repo)
        assert history.current_step() == "2.1"
        assert history.head_step() is None

    def test_all_steps_chronological(self, history_repo):
        assert history_for(history_repo).all_steps() == ["root", "1.1", "1.2", "1", "2.1"]

    def test_step_hash_and_base(self, history_repo):
        history = history_for(history_repo)
        gm = history.gm
        assert gm.get_commit_subject(history.step_hash("1.2")) == "Step 1.2: step 1.2"
        assert history.step_base("1.2") == f"{history.step_hash('1.2')}~1"
        assert history.step_base("root") == "--root"
        assert history.step_hash("root") == gm.root_hash()

    def test_step_hash_missing(self, history_repo):
        with pytest.raises(StepNotFound):
            history_for(history_repo).step_hash("9.9")

    def test_resolve_selector(self, history_repo):
        history = history_for(history_repo)
        root = history.gm.root_hash()
        assert history.resolve_selector("1.2") == "1.2"
        assert history.resolve_selector("root") == "root"
        assert history.resolve_selector("HEAD~1") == "1"
        assert history.resolve_selector(root) == "root"

    def test_resolve_selector_unknown(self, history_repo):
        history = history_for(history_repo)
        with pytest.raises(StepNotFound):
            history.resolve_selector("no-such-branch")

    def test_steps_touching(self, step_repo):
        step_repo.commit("Add manifest", {"package.json": "{}\n"})
        step_repo.step("1.1", files={"package.json": '{"a": 1}\n'})
        step_repo.step("1.2")
        history = history_for(step_repo)
        assert history.steps_touching("package.json") == ["1.1"]
        assert history.steps_touching("README.md") == ["root"]

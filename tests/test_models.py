"""
Tests for data models.
"""

import pytest

from git_steps.models import (
    GitRepositoryError,
    RebaseError,
    RebaseSnapshot,
    RewriteAbortFailure,
    StepDescriptor,
    StepKind,
    UnexpectedConflict,
)


class TestStepDescriptor:
    """Test StepDescriptor model."""

    def test_sub_step(self):
        d = StepDescriptor(number="12.3", message="Title", kind=StepKind.SUB)
        assert d.super_number == 12
        assert d.sub_number == 3
        assert not d.is_super

    def test_frozen(self):
        d = StepDescriptor(number="1", message="Title", kind=StepKind.SUPER)
        with pytest.raises(AttributeError):
            d.number = "2"


class TestRebaseSnapshot:
    """Test RebaseSnapshot model."""

    def test_defaults(self):
        snapshot = RebaseSnapshot(step="root", head="abc", todo="")
        assert snapshot.old_step is None
        assert snapshot.commit is None


class TestErrors:
    """Error taxonomy."""

    def test_all_errors_are_rebase_errors(self):
        assert issubclass(GitRepositoryError, RebaseError)
        assert issubclass(UnexpectedConflict, RebaseError)

    def test_unexpected_conflict_carries_files(self):
        error = UnexpectedConflict("boom", ["src/a.js"])
        assert error.modified_files == ["src/a.js"]
        assert str(error) == "boom"

    def test_abort_failure_carries_state(self):
        error = RewriteAbortFailure("failed", head="abc", status="## main")
        assert error.head == "abc"
        assert error.status == "## main"

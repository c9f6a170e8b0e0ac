"""
Tests for session storage and the step map lifecycle.
"""

from unittest.mock import Mock

import pytest

from git_steps.step_map import StepMapState, StepMapStore
from git_steps.storage import (
    REBASE_HOOKS_DISABLED,
    REBASE_NEW_STEP,
    LocalStorage,
    SessionState,
)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "storage")


@pytest.fixture
def store(storage):
    history = Mock()
    history.all_steps.return_value = ["root", "1.1", "1.2", "1", "2.1"]
    return StepMapStore(storage, history)


class TestLocalStorage:
    """File-per-key storage."""

    def test_missing_key(self, storage):
        assert storage.get_item("NOPE") is None
        assert not storage.has_item("NOPE")

    def test_set_get_remove(self, storage):
        storage.set_item("KEY", 42)
        assert storage.get_item("KEY") == "42"
        storage.remove_item("KEY")
        storage.remove_item("KEY")
        assert storage.get_item("KEY") is None


class TestSessionState:
    """Session variables persisted between processes."""

    def test_round_trip_and_unset(self, storage):
        session = SessionState(new_step="1.2", orig_head="abc", hooks_disabled=True)
        session.save(storage)
        assert storage.get_item(REBASE_NEW_STEP) == "1.2"
        assert storage.has_item(REBASE_HOOKS_DISABLED)

        loaded = SessionState.load(storage)
        assert loaded.new_step == "1.2"
        assert loaded.orig_head == "abc"
        assert loaded.hooks_disabled

        loaded.clear_rewrite()
        loaded.save(storage)
        assert SessionState.load(storage) == SessionState()


class TestStepMapStore:
    """absent -> pending -> committed -> disposed."""

    def test_absent_by_default(self, store):
        assert store.state() is StepMapState.ABSENT
        assert store.get() is None

    def test_initialize_identity_map(self, store):
        mapping = store.initialize()
        assert mapping == {"1.1": "1.1", "1.2": "1.2", "1": "1", "2.1": "2.1"}
        assert store.state() is StepMapState.COMMITTED

    def test_pending_is_hidden_from_consumers(self, store):
        store.initialize(pending=True)
        assert store.state() is StepMapState.PENDING
        assert store.get(require_committed=True) is None
        assert store.get() is not None

        store.commit()
        assert store.get(require_committed=True)["2.1"] == "2.1"

    def test_updates(self, store):
        store.initialize(pending=True)
        store.update_remove("1.2")
        store.update_reset("2.1", "1.2")
        mapping = store.get()
        assert "1.2" not in mapping
        assert mapping["2.1"] == "1.2"

    def test_dispose(self, store):
        store.initialize(pending=True)
        store.dispose()
        assert store.state() is StepMapState.ABSENT

    def test_initialize_without_history(self, storage):
        with pytest.raises(ValueError):
            StepMapStore(storage).initialize()

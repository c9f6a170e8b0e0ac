"""
Tests for manifest conflict resolution.
"""

import json
from unittest.mock import Mock, patch

import pytest

from git_steps.conflict_resolver import (
    ConflictResolver,
    apply_overrides,
    merge_manifests,
    sniff_indent,
    split_conflict,
)
from git_steps.git_manager import GitManager
from git_steps.models import ConflictResolutionError, UnexpectedConflict


CONFLICTED = """\
{
    "name": "app",
    "dependencies": {
<<<<<<< HEAD
        "a": "1.0"
=======
        "a": "0.9",
        "b": "2.0"
>>>>>>> 1234567 (Step 1.2: Add b)
    }
}
"""


class TestMerge:
    """Pure merge rules."""

    def test_head_wins_then_overrides(self):
        head = {"dependencies": {"A": "1.0"}}
        current = {"dependencies": {"A": "0.9", "B": "2.0"}}
        merged = merge_manifests(head, current, {"B": "3.0"})
        assert merged == {"dependencies": {"A": "1.0", "B": "3.0"}}

    def test_head_entries_missing_in_current_are_not_added(self):
        head = {"devDependencies": {"x": "1", "y": "2"}}
        current = {"devDependencies": {"x": "0"}}
        assert merge_manifests(head, current) == {"devDependencies": {"x": "1"}}

    def test_overrides_only_touch_existing_entries(self):
        document = {"dependencies": {"a": "1"}, "peerDependencies": {"b": "1"}}
        apply_overrides(document, {"b": "2", "c": "9"})
        assert document == {"dependencies": {"a": "1"}, "peerDependencies": {"b": "2"}}

    def test_other_sections_untouched(self):
        head = {"scripts": {"build": "new"}, "dependencies": {}}
        current = {"scripts": {"build": "old"}, "dependencies": {}}
        assert merge_manifests(head, current)["scripts"] == {"build": "old"}


class TestConflictText:
    """Conflict markers and formatting."""

    def test_split_conflict(self):
        head, current = split_conflict(CONFLICTED)
        assert json.loads(head)["dependencies"] == {"a": "1.0"}
        assert json.loads(current)["dependencies"] == {"a": "0.9", "b": "2.0"}

    def test_split_without_markers(self):
        assert split_conflict('{"a": 1}') == ('{"a": 1}', '{"a": 1}')

    def test_split_diff3_style(self):
        text = '{\n<<<<<<< HEAD\n  "a": 2\n||||||| base\n  "a": 0\n=======\n  "a": 1\n>>>>>>> abc\n}\n'
        head, current = split_conflict(text)
        assert json.loads(head) == {"a": 2}
        assert json.loads(current) == {"a": 1}

    def test_sniff_indent(self):
        assert sniff_indent(CONFLICTED) == "    "
        assert sniff_indent("{}") == "  "


class TestConflictResolver:
    """Resolution against a working tree."""

    @pytest.fixture
    def resolver(self, step_repo):
        step_repo.commit("Add manifest", {"package.json": "{}\n"})
        return ConflictResolver(GitManager(step_repo.path))

    def test_resolve_file_writes_and_stages(self, resolver, step_repo):
        step_repo.write("package.json", CONFLICTED)
        merged = resolver.resolve_file({"b": "3.0"})

        assert merged["dependencies"] == {"a": "1.0", "b": "3.0"}
        text = (step_repo.path / "package.json").read_text(encoding="utf-8")
        assert text.startswith('{\n    "name"')
        assert text.endswith("}\n")
        assert "package.json" in resolver.git_manager.get_staged_files()

    def test_resolve_file_missing_manifest(self, step_repo):
        resolver = ConflictResolver(GitManager(step_repo.path))
        assert resolver.resolve_file() is None

    def test_unparseable_manifest(self, resolver, step_repo):
        step_repo.write("package.json", "{ not json")
        with pytest.raises(ConflictResolutionError):
            resolver.resolve_file()

    def test_is_recoverable(self, resolver):
        assert resolver.is_recoverable(["package.json"])
        assert resolver.is_recoverable(["package.json", "package.json"])
        assert not resolver.is_recoverable([])
        assert not resolver.is_recoverable(["package.json", "src/index.js"])

    def test_stopped_rebase_reports_status(self):
        gm = Mock()
        gm.remaining_todo.return_value = ["pick abc Step 1.2: Add b"]
        gm.is_rebase_in_progress.return_value = True
        gm.continue_rebase.return_value = (False, [])
        gm.get_modified_files.return_value = []
        gm.status_summary.return_value = "## HEAD (no branch)\n?? notes.txt"
        resolver = ConflictResolver(gm)
        resolver.history = Mock()
        resolver.history.head_step.return_value = None

        with patch.object(resolver, "resolve_file"):
            with pytest.raises(UnexpectedConflict) as excinfo:
                resolver.run()

        assert "rebase stopped" in str(excinfo.value)
        assert "?? notes.txt" in str(excinfo.value)
        assert excinfo.value.modified_files == []

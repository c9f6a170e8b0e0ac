"""
Tests for the helpers used by rebase tasks.
"""

from git_steps.rebase_tasks import (
    REMOVED_STEP,
    TaskContext,
    fix_diff_step_helpers,
    renumber,
    shift_manual_files,
    super_pick,
)
from git_steps.step_map import StepMapStore
from git_steps.storage import SessionState


PATCH = """\
diff --git a/manuals/templates/step3.tmpl b/manuals/templates/step3.tmpl
new file mode 100644
--- /dev/null
+++ b/manuals/templates/step3.tmpl
@@ -0,0 +1,3 @@
+{{{diffStep "3.1"}}}
+{{{diffStep "3.2" module="server"}}}
+{{{diffStep 4.1 module="client"}}}
"""


class TestShiftManualFiles:
    """Manual file renames for super-steps that moved."""

    def test_shift_down(self):
        shifted = shift_manual_files(PATCH, -1)
        assert "step3.tmpl" not in shifted
        assert shifted.count("step2.tmpl") == 3

    def test_shift_zero_is_identity(self):
        assert shift_manual_files(PATCH, 0) == PATCH

    def test_markdown_views(self):
        assert shift_manual_files("manuals/views/step9.md", 2) == "manuals/views/step11.md"


class TestFixDiffStepHelpers:
    """diffStep helpers referencing another project's steps."""

    def test_only_matching_module_is_rewritten(self):
        fixed = fix_diff_step_helpers(PATCH, {"3.2": "2.5", "4.1": "3.1"}, "server")
        assert '{{{diffStep "3.1"}}}' in fixed
        assert '{{{diffStep "2.5" module="server"}}}' in fixed
        assert '{{{diffStep 4.1 module="client"}}}' in fixed

    def test_removed_step_placeholder(self):
        fixed = fix_diff_step_helpers(PATCH, {}, "client")
        assert f'{{{{{{diffStep {REMOVED_STEP} module="client"}}}}}}' in fixed


class TestRenumber:
    """Relabelling HEAD by position."""

    def test_renumbers_sub_step(self, step_repo):
        step_repo.step("1.1")
        step_repo.step("1.5", message="Out of place")
        ctx = TaskContext(step_repo.path)

        assert renumber(ctx) == "1.2"
        assert step_repo.subjects()[-1] == "Step 1.2: Out of place"

    def test_keeps_body(self, step_repo):
        step_repo.commit("Step 4.4: Title\n\nLonger body")
        ctx = TaskContext(step_repo.path)

        assert renumber(ctx) == "1.1"
        assert step_repo.repo.head.commit.message.strip() == "Step 1.1: Title\n\nLonger body"

    def test_unchanged_step_is_not_amended(self, step_repo):
        step_repo.step("1.1")
        head = step_repo.head
        assert renumber(TaskContext(step_repo.path)) == "1.1"
        assert step_repo.head == head

    def test_super_step(self, step_repo):
        step_repo.step("1.1")
        step_repo.step("3")
        assert renumber(TaskContext(step_repo.path)) == "1"


class TestSuperPick:
    """Replaying super-steps whose manuals reference another project."""

    HELPER = '{{{diffStep "1.2" module="library"}}}\n'

    def test_uses_committed_step_map_of_other_project(self, step_repo, make_step_repo):
        library = make_step_repo("library")
        for number in ("1.1", "1.2", "1.3"):
            library.step(number)
        library_map = StepMapStore.for_project(library.path)
        library_map.initialize()
        library_map.update_remove("1.1")
        library_map.update_reset("1.2", "1.1")

        step_repo.step("1.1")
        commit = step_repo.step("1", files={"manuals/templates/step1.tmpl": self.HELPER})
        step_repo.repo.git.reset("--hard", "HEAD~1")
        ctx = TaskContext(step_repo.path)
        SessionState(submodule_cwd=str(library.path)).save(ctx.storage)

        super_pick(ctx, commit)

        template = step_repo.path / "manuals" / "templates" / "step1.tmpl"
        assert template.read_text(encoding="utf-8") == '{{{diffStep "1.1" module="library"}}}\n'
        assert step_repo.subjects()[-1] == "Step 1: step 1"

    def test_pending_step_map_is_ignored(self, step_repo, make_step_repo):
        library = make_step_repo("library")
        library.step("1.1")
        StepMapStore.for_project(library.path).initialize(pending=True)

        commit = step_repo.step("1", files={"manuals/templates/step1.tmpl": self.HELPER})
        step_repo.repo.git.reset("--hard", "HEAD~1")
        ctx = TaskContext(step_repo.path)
        SessionState(submodule_cwd=str(library.path)).save(ctx.storage)

        super_pick(ctx, commit)

        template = step_repo.path / "manuals" / "templates" / "step1.tmpl"
        assert template.read_text(encoding="utf-8") == self.HELPER

"""
Tests for step parsing, ordering and numbering.
"""

import pytest

from git_steps import step as steps
from git_steps.models import MalformedStep, StepDescriptor, StepKind


def descriptor(number: str, message: str = "msg") -> StepDescriptor:
    kind = StepKind.SUB if "." in number else StepKind.SUPER
    return StepDescriptor(number=number, message=message, kind=kind)


class TestParse:
    """Subject parsing."""

    def test_parse_sub_step(self):
        d = steps.parse("Step 1.2: Add a button")
        assert d == StepDescriptor(number="1.2", message="Add a button", kind=StepKind.SUB)

    def test_parse_super_step(self):
        d = steps.parse("Step 3: Wrap up")
        assert d.number == "3"
        assert d.is_super
        assert d.super_number == 3
        assert d.sub_number is None

    def test_parse_multiline_message(self):
        d = steps.parse("Step 2.1: Title\n\nBody text")
        assert d.message == "Title\n\nBody text"

    @pytest.mark.parametrize("subject", ["Initial commit", "step 1: lower", "Step x: nope", "Step 1 missing colon"])
    def test_parse_non_steps(self, subject):
        assert steps.parse(subject) is None

    def test_parse_none_raises(self):
        with pytest.raises(TypeError):
            steps.parse(None)

    def test_format_parse_inverse(self):
        for d in (descriptor("1.1", "Hello"), descriptor("4", "World: again")):
            assert steps.parse(steps.format_message(d)) == d


class TestValidation:
    """Step number validation."""

    def test_is_step_number(self):
        assert steps.is_step_number("1")
        assert steps.is_step_number("12.3")
        assert not steps.is_step_number("root")
        assert not steps.is_step_number("1.")
        assert not steps.is_step_number("123456")
        assert not steps.is_step_number(5)

    def test_assert_step_accepts_int(self):
        assert steps.assert_step(5) == "5"

    def test_assert_step_rejects_garbage(self):
        with pytest.raises(MalformedStep):
            steps.assert_step("HEAD~1")


class TestOrdering:
    """Sorting of step numbers."""

    def test_root_first_then_super_sub(self):
        numbers = ["2", "1.2", "root", "10.1", "1", "2.1", "1.10"]
        assert steps.sort_steps(numbers) == ["root", "1", "1.2", "1.10", "2", "2.1", "10.1"]

    def test_sort_deduplicates(self):
        assert steps.sort_steps(["1.1", "1.1", "root", "root"]) == ["root", "1.1"]

    def test_super_of(self):
        assert steps.super_of("3.4") == "3"
        assert steps.super_of("3") == "3"


class TestNextStepNumber:
    """Numbering of the step that follows."""

    def test_empty_history(self):
        assert steps.next_step_number(None) == "1.1"

    def test_after_sub_step(self):
        assert steps.next_step_number(descriptor("2.1")) == "2.2"

    def test_after_super_step(self):
        assert steps.next_step_number(descriptor("2")) == "3.1"

    def test_super_lookahead_after_sub_step(self):
        assert steps.next_step_number(descriptor("2.3"), descriptor("7")) == "2"

    def test_super_lookahead_after_super_step(self):
        assert steps.next_step_number(descriptor("2"), descriptor("7")) == "3"

    def test_sub_lookahead_keeps_sub_numbering(self):
        assert steps.next_step_number(descriptor("2"), descriptor("5.1")) == "3.1"

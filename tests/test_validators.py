"""Tests for phaseflow.workflow.validators."""

import pytest

from phaseflow.lib import constants
from phaseflow.lib.models import FeatureType, Phase
from phaseflow.workflow.validators import (
    BugInvestigationValidator,
    BugTestingValidator,
    CreatedValidator,
    ImplementationValidator,
    ProductRefinementValidator,
    ReviewValidator,
    TaskTestingValidator,
    TechSpecValidator,
    TestingValidator,
    ValidationResult,
    get_validator_for_phase,
)


def write(feature_dir, rel, text):
    path = feature_dir / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_empty_is_valid(self):
        """No issues should be valid."""
        assert ValidationResult().valid

    def test_warnings_do_not_invalidate(self):
        """Warnings alone should leave the result valid."""
        result = ValidationResult()
        result.warning("heads up")
        assert result.valid
        assert result.warnings == ["heads up"]

    def test_errors_invalidate(self):
        """Any error should make the result invalid."""
        result = ValidationResult()
        result.error("broken", file="x.md")
        assert not result.valid
        assert result.errors == ["broken"]
        assert result.issues[0].file == "x.md"


class TestCreatedValidator:
    """Tests for CreatedValidator."""

    def test_missing_initialization(self, tmp_path):
        """Should error when initialization.md is missing."""
        result = CreatedValidator().validate(tmp_path)
        assert result.errors == ["initialization.md is missing or empty"]

    def test_missing_heading_warns(self, tmp_path):
        """Should warn when there is no title heading."""
        write(tmp_path, constants.INITIALIZATION_MD, "Just some plain notes here.")
        result = CreatedValidator().validate(tmp_path)
        assert result.valid
        assert result.warnings == ["initialization.md should have a title heading"]

    def test_min_content_length_is_configurable(self, tmp_path):
        """A higher threshold should reject short files."""
        write(tmp_path, constants.INITIALIZATION_MD, "# Short one")
        assert CreatedValidator().validate(tmp_path).valid
        assert not CreatedValidator(min_content_length=50).validate(tmp_path).valid


class TestBugInvestigationValidator:
    """Tests for BugInvestigationValidator."""

    def test_missing_investigation(self, tmp_path):
        """Should error without investigation.md."""
        assert BugInvestigationValidator().validate(tmp_path).errors == ["investigation.md is missing or empty"]

    def test_root_cause_warning(self, tmp_path):
        """Should warn when no root cause analysis is written."""
        write(tmp_path, constants.INVESTIGATION_MD, "# Investigation\n\nCrashes on save.\n")
        result = BugInvestigationValidator().validate(tmp_path)
        assert result.valid
        assert len(result.warnings) == 1

    def test_with_root_cause(self, tmp_path):
        """Should be clean when root cause is present."""
        write(tmp_path, constants.INVESTIGATION_MD, "# Investigation\n\nRoot cause: null pointer.\n")
        assert BugInvestigationValidator().validate(tmp_path).issues == []


class TestProductRefinementValidator:
    """Tests for ProductRefinementValidator."""

    def test_requires_requirements(self, tmp_path):
        """Should error without requirements.md."""
        assert not ProductRefinementValidator().validate(tmp_path).valid
        write(tmp_path, constants.REQUIREMENTS_MD, "# Requirements\n\n- a thing\n")
        assert ProductRefinementValidator().validate(tmp_path).valid


class TestTechSpecValidator:
    """Tests for TechSpecValidator."""

    def test_both_missing(self, tmp_path):
        """Should report both missing files."""
        assert len(TechSpecValidator().validate(tmp_path).errors) == 2

    def test_tasks_without_checkboxes_warns(self, tmp_path):
        """Should warn when tasks.md has no checkboxes."""
        write(tmp_path, constants.SPEC_MD, "# Spec\n\nDo the thing.\n")
        write(tmp_path, constants.TASKS_MD, "# Tasks\n\nWrite the code.\n")
        result = TechSpecValidator().validate(tmp_path)
        assert result.valid
        assert "checkboxes" in result.warnings[0]


class TestImplementationValidator:
    """Tests for ImplementationValidator."""

    def test_no_tasks(self, tmp_path):
        """Should error when there are no tasks at all."""
        assert ImplementationValidator().validate(tmp_path).errors == ["No tasks found in tasks.md"]

    def test_incomplete_tasks(self, tmp_path):
        """Should report the completion count."""
        write(tmp_path, constants.TASKS_MD, "- [x] a\n- [ ] b\n- [ ] c\n")
        result = ImplementationValidator().validate(tmp_path)
        assert result.errors == ["Not all tasks complete: 1/3 done"]
        assert result.issues[0].expected == "3 tasks complete"

    def test_all_done(self, tmp_path):
        """Should pass when every task is ticked."""
        write(tmp_path, constants.TASKS_MD, "- [x] a\n- [x] b\n")
        assert ImplementationValidator().validate(tmp_path).valid


class TestReviewValidator:
    """Tests for ReviewValidator."""

    def test_no_verdict(self, tmp_path):
        """Should error when the review has no verdict."""
        write(tmp_path, constants.REVIEW_MD, "# Review\n\nStill reading.\n")
        assert ReviewValidator().validate(tmp_path).errors == ["Review not complete: no verdict found"]

    def test_failed_review(self, tmp_path):
        """Should error on a FAIL verdict."""
        write(tmp_path, constants.REVIEW_MD, "# Review\n\n## Verdict\n\nFAIL\n")
        result = ReviewValidator().validate(tmp_path)
        assert result.errors == ["Review failed: fix issues before proceeding to testing"]
        assert result.issues[0].actual == "FAIL"

    def test_passed_review(self, tmp_path):
        """Should pass on a PASS verdict."""
        write(tmp_path, constants.REVIEW_MD, "# Review\n\n## Verdict\n\nPASS\n")
        assert ReviewValidator().validate(tmp_path).valid


class TestTestingValidators:
    """Tests for the testing-phase validators."""

    def test_requires_passing_status(self, tmp_path):
        """Should error when testing.md has no passing status."""
        write(tmp_path, constants.TESTING_MD, "# Testing\n\nStatus: fail\n")
        assert TestingValidator().validate(tmp_path).errors == ["No passing test found in testing.md"]

    def test_passing(self, tmp_path):
        """Should pass with a passing status line."""
        write(tmp_path, constants.TESTING_MD, "# Testing\n\nStatus: pass\n")
        assert TestingValidator().validate(tmp_path).issues == []

    def test_bug_needs_regression_note(self, tmp_path):
        """Bug testing without a regression mention should warn."""
        write(tmp_path, constants.TESTING_MD, "# Testing\n\nStatus: pass\n")
        result = BugTestingValidator().validate(tmp_path)
        assert result.valid
        assert result.warnings == ["Bug testing should include regression test validation"]

    def test_bug_with_regression(self, tmp_path):
        """Mentioning regression tests should clear the warning."""
        write(tmp_path, constants.TESTING_MD, "# Testing\n\nRegression suite green.\nStatus: pass\n")
        assert BugTestingValidator().validate(tmp_path).issues == []

    def test_task_testing(self, tmp_path):
        """Task testing only needs the passing status."""
        write(tmp_path, constants.TESTING_MD, "# Testing\n\nStatus: pass\n")
        assert TaskTestingValidator().validate(tmp_path).valid


class TestGetValidatorForPhase:
    """Tests for get_validator_for_phase."""

    @pytest.mark.parametrize("phase,feature_type,expected", [
        (Phase.CREATED, FeatureType.FEATURE, CreatedValidator),
        (Phase.CREATED, FeatureType.TASK, CreatedValidator),
        (Phase.CREATED, FeatureType.BUG, BugInvestigationValidator),
        (Phase.PRODUCT_REFINEMENT, FeatureType.FEATURE, ProductRefinementValidator),
        (Phase.TECH_SPEC, FeatureType.BUG, TechSpecValidator),
        (Phase.IMPLEMENTATION, FeatureType.TASK, ImplementationValidator),
        (Phase.REVIEW, FeatureType.FEATURE, ReviewValidator),
        (Phase.TESTING, FeatureType.FEATURE, TestingValidator),
        (Phase.TESTING, FeatureType.BUG, BugTestingValidator),
        (Phase.TESTING, FeatureType.TASK, TaskTestingValidator),
    ])
    def test_selects_validator(self, phase, feature_type, expected):
        """Should pick the validator for the phase and type."""
        assert type(get_validator_for_phase(phase, feature_type)) is expected

    def test_task_skips_product_refinement(self):
        """Tasks have no product refinement check."""
        assert get_validator_for_phase(Phase.PRODUCT_REFINEMENT, FeatureType.TASK) is None

    def test_complete_has_no_validator(self):
        """Nothing is validated when leaving 'complete'."""
        assert get_validator_for_phase(Phase.COMPLETE, FeatureType.FEATURE) is None

    def test_accepts_strings(self):
        """Plain strings should be accepted for phase and type."""
        validator = get_validator_for_phase("review", "bug", min_content_length=20)
        assert isinstance(validator, ReviewValidator)
        assert validator.min_content_length == 20

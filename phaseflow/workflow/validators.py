"""
Phase validators.

Each validator checks the artifacts a feature must have produced before it
can leave a phase. Validators only read files; they never touch the ledger
or history.

Usage:
    validator = get_validator_for_phase(Phase.TECH_SPEC, FeatureType.FEATURE)
    if validator:
        result = validator.validate(feature_dir)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from phaseflow.lib import constants
from phaseflow.lib.artifacts import has_meaningful_content, task_progress, task_progress_from_text
from phaseflow.lib.models import FeatureType, Phase
from phaseflow.lib.review import review_outcome
from phaseflow.lib.test_parser import testing_passed_from_text


@dataclass
class ValidationIssue:
    level: str  # "error" or "warning"
    message: str
    file: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None


@dataclass
class ValidationResult:
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.level == "error"]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.level == "warning"]

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str, **kwargs) -> None:
        self.issues.append(ValidationIssue("error", message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.issues.append(ValidationIssue("warning", message, **kwargs))


class PhaseValidator:
    """Base validator. `target_phase` is the phase the check unlocks."""
    target_phase: Phase

    def __init__(self, min_content_length: int = constants.MIN_CONTENT_LENGTH):
        self.min_content_length = min_content_length

    def _has_content(self, path: Path) -> bool:
        return has_meaningful_content(path, self.min_content_length)

    def validate(self, feature_dir: Path) -> ValidationResult:
        raise NotImplementedError


class CreatedValidator(PhaseValidator):
    target_phase = Phase.PRODUCT_REFINEMENT

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        init_path = feature_dir / constants.INITIALIZATION_MD
        if not self._has_content(init_path):
            result.error("initialization.md is missing or empty", file=constants.INITIALIZATION_MD)
        elif "# " not in init_path.read_text():
            result.warning("initialization.md should have a title heading", file=constants.INITIALIZATION_MD)
        return result


class BugInvestigationValidator(PhaseValidator):
    """Stands in for CreatedValidator on bugs: an investigation note is required."""
    target_phase = Phase.PRODUCT_REFINEMENT

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        path = feature_dir / constants.INVESTIGATION_MD
        if not self._has_content(path):
            result.error("investigation.md is missing or empty", file=constants.INVESTIGATION_MD)
        elif "root cause" not in path.read_text().lower():
            result.warning("investigation.md should contain root cause analysis", file=constants.INVESTIGATION_MD)
        return result


class ProductRefinementValidator(PhaseValidator):
    target_phase = Phase.TECH_SPEC

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        if not self._has_content(feature_dir / constants.REQUIREMENTS_MD):
            result.error("requirements.md is missing or empty", file=constants.REQUIREMENTS_MD)
        return result


class TechSpecValidator(PhaseValidator):
    target_phase = Phase.IMPLEMENTATION

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        if not self._has_content(feature_dir / constants.SPEC_MD):
            result.error("spec.md is missing or empty", file=constants.SPEC_MD)

        tasks_path = feature_dir / constants.TASKS_MD
        if not self._has_content(tasks_path):
            result.error("tasks.md is missing or empty", file=constants.TASKS_MD)
        elif task_progress_from_text(tasks_path.read_text()).total == 0:
            result.warning("tasks.md should contain task checkboxes (- [ ] format)", file=constants.TASKS_MD)
        return result


class ImplementationValidator(PhaseValidator):
    target_phase = Phase.REVIEW

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        progress = task_progress(feature_dir / constants.TASKS_MD)
        if progress.total == 0:
            result.error("No tasks found in tasks.md", file=constants.TASKS_MD)
        elif not progress.is_complete:
            result.error(
                f"Not all tasks complete: {progress.completed}/{progress.total} done",
                file=constants.TASKS_MD,
                expected=f"{progress.total} tasks complete",
                actual=f"{progress.completed} tasks complete",
            )
        return result


class ReviewValidator(PhaseValidator):
    target_phase = Phase.TESTING

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        review_path = feature_dir / constants.REVIEW_MD
        if not self._has_content(review_path):
            result.error("review.md is missing or empty", file=constants.REVIEW_MD)
            return result

        outcome = review_outcome(review_path)
        if not outcome.is_complete:
            result.error("Review not complete: no verdict found", file=constants.REVIEW_MD)
        elif outcome.verdict == "fail":
            result.error(
                "Review failed: fix issues before proceeding to testing",
                file=constants.REVIEW_MD,
                expected="PASS",
                actual="FAIL",
            )
        return result


class TestingValidator(PhaseValidator):
    __test__ = False  # not a pytest class
    target_phase = Phase.COMPLETE

    def _check_testing_log(self, feature_dir: Path, result: ValidationResult) -> Optional[str]:
        """Shared checks; returns the lowered log text when it exists."""
        testing_path = feature_dir / constants.TESTING_MD
        if not self._has_content(testing_path):
            result.error("testing.md is missing or empty", file=constants.TESTING_MD)
            return None

        content = testing_path.read_text()
        if not testing_passed_from_text(content):
            result.error(
                "No passing test found in testing.md",
                file=constants.TESTING_MD,
                expected="Status: pass",
                actual="No passing status found",
            )
        return content.lower()

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        self._check_testing_log(feature_dir, result)
        return result


class BugTestingValidator(TestingValidator):
    """Bug fixes must also mention regression coverage."""

    def validate(self, feature_dir: Path) -> ValidationResult:
        result = ValidationResult()
        content = self._check_testing_log(feature_dir, result)
        if content is not None and "regression" not in content:
            result.warning("Bug testing should include regression test validation", file=constants.TESTING_MD)
        return result


class TaskTestingValidator(TestingValidator):
    """Tasks only need a passing status."""


def get_validator_for_phase(
    phase: Phase,
    feature_type: FeatureType,
    min_content_length: int = constants.MIN_CONTENT_LENGTH,
) -> Optional[PhaseValidator]:
    """Pick the validator that guards leaving `phase` for this feature type.

    Returns None when nothing is checked (tasks skip product refinement;
    'complete' is terminal).
    """
    phase = Phase(phase)
    feature_type = FeatureType(feature_type)

    if phase == Phase.CREATED:
        cls = BugInvestigationValidator if feature_type == FeatureType.BUG else CreatedValidator
    elif phase == Phase.PRODUCT_REFINEMENT:
        if feature_type == FeatureType.TASK:
            return None
        cls = ProductRefinementValidator
    elif phase == Phase.TECH_SPEC:
        cls = TechSpecValidator
    elif phase == Phase.IMPLEMENTATION:
        cls = ImplementationValidator
    elif phase == Phase.REVIEW:
        cls = ReviewValidator
    elif phase == Phase.TESTING:
        if feature_type == FeatureType.BUG:
            cls = BugTestingValidator
        elif feature_type == FeatureType.TASK:
            cls = TaskTestingValidator
        else:
            cls = TestingValidator
    else:
        return None

    return cls(min_content_length)

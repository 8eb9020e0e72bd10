"""
Artifact inspection for feature directories.

Pure file reads that derive phase-completion facts from the documents a
feature produces (checklists, review verdicts, testing logs). Nothing here
consults the ledger, so these results are the ground truth used to detect
drift between recorded and actual state.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from phaseflow.lib import constants
from phaseflow.lib.models import PHASE_ORDER, FeatureType, Phase
from phaseflow.lib.review import review_outcome
from phaseflow.lib.test_parser import testing_passed_from_text

logger = logging.getLogger(__name__)

TASK_PATTERN = re.compile(r'^[-*]\s+\[[\sx]\]', re.IGNORECASE)
COMPLETED_PATTERN = re.compile(r'^[-*]\s+\[x\]', re.IGNORECASE)


@dataclass
class TaskProgress:
    total: int
    completed: int

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.completed == self.total


@dataclass
class PhaseStatus:
    phase: Phase
    is_complete: bool


@dataclass
class NextAction:
    """Suggested next step for a feature."""
    suggested_phase: Phase
    action: str
    hint: Optional[str] = None


def has_meaningful_content(path: Path, min_length: int = constants.MIN_CONTENT_LENGTH) -> bool:
    """True if path exists and holds at least min_length non-whitespace-trimmed chars."""
    if not path.is_file():
        return False
    try:
        return len(path.read_text().strip()) >= min_length
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Unreadable artifact {path}: {e}")
        return False


def task_progress_from_text(content: str) -> TaskProgress:
    """Count checklist lines ("- [ ]", "* [x]", ...) and how many are ticked."""
    total = 0
    completed = 0
    for line in content.splitlines():
        stripped = line.strip()
        if TASK_PATTERN.match(stripped):
            total += 1
            if COMPLETED_PATTERN.match(stripped):
                completed += 1
    return TaskProgress(total=total, completed=completed)


def task_progress(tasks_path: Path) -> TaskProgress:
    if not tasks_path.exists():
        return TaskProgress(total=0, completed=0)
    return task_progress_from_text(tasks_path.read_text())


def archived_summary_path(feature_dir: Path) -> Path:
    """Location of summary.md once the feature is archived.

    For <content>/todo/<id> this is <content>/done/<id>/summary.md; for a
    directory already under done/ it is the directory's own summary.md.
    """
    if feature_dir.parent.name == constants.DONE_DIR:
        return feature_dir / constants.SUMMARY_MD
    content_dir = feature_dir.parent.parent
    return content_dir / constants.DONE_DIR / feature_dir.name / constants.SUMMARY_MD


def _testing_log_passed(feature_dir: Path, min_length: int) -> bool:
    testing_path = feature_dir / constants.TESTING_MD
    if not has_meaningful_content(testing_path, min_length):
        return False
    return testing_passed_from_text(testing_path.read_text())


def is_phase_complete(
    feature_dir: Path,
    phase: Phase,
    min_length: int = constants.MIN_CONTENT_LENGTH,
) -> bool:
    """Check whether the artifacts for a phase are in place.

    min_length is the same threshold the phase validators apply to
    document bodies (the project's MIN_CONTENT_LENGTH).
    """
    phase = Phase(phase)
    if phase == Phase.CREATED:
        return has_meaningful_content(feature_dir / constants.INITIALIZATION_MD, min_length)
    if phase == Phase.PRODUCT_REFINEMENT:
        return has_meaningful_content(feature_dir / constants.REQUIREMENTS_MD, min_length)
    if phase == Phase.TECH_SPEC:
        return (has_meaningful_content(feature_dir / constants.SPEC_MD, min_length)
                and has_meaningful_content(feature_dir / constants.TASKS_MD, min_length))
    if phase == Phase.IMPLEMENTATION:
        return task_progress(feature_dir / constants.TASKS_MD).is_complete
    if phase == Phase.REVIEW:
        return review_outcome(feature_dir / constants.REVIEW_MD).is_complete
    if phase == Phase.TESTING:
        return has_meaningful_content(feature_dir / constants.TESTING_MD, min_length)
    return has_meaningful_content(archived_summary_path(feature_dir), min_length)


def get_all_phase_statuses(
    feature_dir: Path, min_length: int = constants.MIN_CONTENT_LENGTH
) -> list[PhaseStatus]:
    return [
        PhaseStatus(phase=p, is_complete=is_phase_complete(feature_dir, p, min_length))
        for p in PHASE_ORDER
    ]


def highest_completed_phase(
    feature_dir: Path, min_length: int = constants.MIN_CONTENT_LENGTH
) -> Optional[Phase]:
    for phase in reversed(PHASE_ORDER):
        if is_phase_complete(feature_dir, phase, min_length):
            return phase
    return None


def detect_phase_from_artifacts(
    feature_dir: Path, min_length: int = constants.MIN_CONTENT_LENGTH
) -> Phase:
    """Infer the highest phase the feature has completed from its artifacts.

    Checks in descending order and returns the first match:
    archived summary, passing testing status, approved review, all tasks
    ticked, spec + tasks, requirements, initialization. Falls back to
    'created'. The result is what the feature has finished, not where it
    should go next; use next_phase() for that.
    """
    if has_meaningful_content(archived_summary_path(feature_dir), min_length):
        return Phase.COMPLETE

    if _testing_log_passed(feature_dir, min_length):
        return Phase.TESTING

    outcome = review_outcome(feature_dir / constants.REVIEW_MD)
    if outcome.is_complete and outcome.verdict == "pass":
        return Phase.REVIEW

    if task_progress(feature_dir / constants.TASKS_MD).is_complete:
        return Phase.IMPLEMENTATION

    if is_phase_complete(feature_dir, Phase.TECH_SPEC, min_length):
        return Phase.TECH_SPEC

    if is_phase_complete(feature_dir, Phase.PRODUCT_REFINEMENT, min_length):
        return Phase.PRODUCT_REFINEMENT

    return Phase.CREATED


def next_phase(phase: Phase) -> Optional[Phase]:
    """The phase after `phase` in workflow order, or None at 'complete'."""
    index = PHASE_ORDER.index(Phase(phase))
    if index >= len(PHASE_ORDER) - 1:
        return None
    return PHASE_ORDER[index + 1]


def can_transition_to(
    feature_dir: Path,
    target: Phase,
    feature_type: FeatureType = FeatureType.FEATURE,
    min_length: int = constants.MIN_CONTENT_LENGTH,
) -> tuple[bool, Optional[str]]:
    """Check artifact prerequisites for starting `target`.

    Every earlier phase must be complete, except product_refinement for
    tasks (they never write requirements.md). Testing additionally requires
    that the review did not fail.

    Returns:
        (True, None) or (False, reason)
    """
    target = Phase(target)
    for prereq in PHASE_ORDER[:PHASE_ORDER.index(target)]:
        if prereq == Phase.PRODUCT_REFINEMENT and FeatureType(feature_type) == FeatureType.TASK:
            continue
        if not is_phase_complete(feature_dir, prereq, min_length):
            return False, f"Phase '{prereq.value}' is not complete. Cannot start '{target.value}'."

    if target == Phase.TESTING:
        if review_outcome(feature_dir / constants.REVIEW_MD).verdict == "fail":
            return False, "Review failed. Fix issues and re-run review before testing."

    return True, None


def suggest_next_action(
    feature_dir: Path, min_length: int = constants.MIN_CONTENT_LENGTH
) -> NextAction:
    """Suggest what to do next based on the artifacts alone."""
    if not is_phase_complete(feature_dir, Phase.CREATED, min_length):
        return NextAction(Phase.CREATED, "Feature not properly initialized", hint="Run repair on the feature")

    if not is_phase_complete(feature_dir, Phase.TECH_SPEC, min_length):
        return NextAction(Phase.PRODUCT_REFINEMENT, "Run refinement to gather requirements and create tech spec")

    if not is_phase_complete(feature_dir, Phase.IMPLEMENTATION, min_length):
        progress = task_progress(feature_dir / constants.TASKS_MD)
        return NextAction(Phase.IMPLEMENTATION, f"Implement tasks ({progress.completed}/{progress.total} done)")

    outcome = review_outcome(feature_dir / constants.REVIEW_MD)
    if not outcome.is_complete:
        return NextAction(Phase.REVIEW, "Run code review")

    if outcome.verdict == "fail":
        return NextAction(
            Phase.IMPLEMENTATION,
            "Review failed - fix issues and re-implement",
            hint="Record the failure so the retry count is tracked",
        )

    if not is_phase_complete(feature_dir, Phase.TESTING, min_length):
        return NextAction(Phase.TESTING, "Run manual testing")

    if not is_phase_complete(feature_dir, Phase.COMPLETE, min_length):
        return NextAction(Phase.COMPLETE, "Complete and archive the feature")

    return NextAction(Phase.COMPLETE, "Feature is complete!")

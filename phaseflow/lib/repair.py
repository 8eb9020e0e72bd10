"""
Consistency checks and explicit repairs.

Nothing here runs implicitly: the engine surfaces corruption as errors and
leaves recovery to these functions. Checks return RepairIssue items; a fix
is a callable that performs the repair and returns a description of what
it did.
"""

import logging
import shutil
from dataclasses import dataclass
from typing import Callable, Optional

from phaseflow.lib import constants, metrics
from phaseflow.lib.artifacts import detect_phase_from_artifacts
from phaseflow.lib.config import Project, write_json
from phaseflow.lib.errors import LedgerCorrupted
from phaseflow.lib.history import (
    FeatureRemoved,
    FeatureUnblocked,
    append_history,
    log_ledger_recovery,
    log_repair,
)
from phaseflow.lib.models import PHASE_ORDER, FeatureType, Ledger, Phase
from phaseflow.lib.store import JsonLedgerStore, read_ledger_file

logger = logging.getLogger(__name__)

# Artifacts that must exist once a feature has reached a phase
REQUIRED_ARTIFACTS: dict[Phase, list[str]] = {
    Phase.CREATED: [constants.INITIALIZATION_MD],
    Phase.PRODUCT_REFINEMENT: [constants.INITIALIZATION_MD],
    Phase.TECH_SPEC: [constants.INITIALIZATION_MD, constants.REQUIREMENTS_MD],
    Phase.IMPLEMENTATION: [constants.INITIALIZATION_MD, constants.REQUIREMENTS_MD, constants.SPEC_MD, constants.TASKS_MD],
    Phase.REVIEW: [constants.INITIALIZATION_MD, constants.REQUIREMENTS_MD, constants.SPEC_MD, constants.TASKS_MD],
    Phase.TESTING: [
        constants.INITIALIZATION_MD, constants.REQUIREMENTS_MD, constants.SPEC_MD,
        constants.TASKS_MD, constants.REVIEW_MD,
    ],
    Phase.COMPLETE: [],
}


@dataclass
class RepairIssue:
    level: str  # "error" or "warning"
    message: str
    fix: Optional[Callable[[], str]] = None

    @property
    def fixable(self) -> bool:
        return self.fix is not None


def _store(project: Project) -> JsonLedgerStore:
    return JsonLedgerStore(project.ledger_path, project.lock_path, project.lock_timeout)


def required_artifacts(phase: Phase, feature_type: FeatureType) -> list[str]:
    artifacts = REQUIRED_ARTIFACTS[Phase(phase)]
    if FeatureType(feature_type) == FeatureType.TASK:
        artifacts = [a for a in artifacts if a != constants.REQUIREMENTS_MD]
    return artifacts


def _drop_ledger_entry(project: Project, feature_id: str) -> Callable[[], str]:
    def fix() -> str:
        store = _store(project)
        with store.locked():
            ledger = store.load()
            ledger.features = [f for f in ledger.features if f.id != feature_id]
            store.save(ledger)
            append_history(project.history_path, FeatureRemoved(feature_id=feature_id))
        return f"Removed orphan ledger entry {feature_id}"
    return fix


def _unblock(project: Project, feature_id: str) -> Callable[[], str]:
    def fix() -> str:
        store = _store(project)
        with store.locked():
            ledger = store.load()
            feature = ledger.get(feature_id)
            if feature is None or not feature.is_blocked:
                return f"{feature_id} already unblocked"
            feature.blocked_reason = None
            feature.touch()
            store.save(ledger)
            append_history(project.history_path, FeatureUnblocked(feature_id=feature_id))
        return f"Unblocked {feature_id}"
    return fix


def _recover(project: Project) -> Callable[[], str]:
    def fix() -> str:
        source, count = recover_ledger(project)
        return f"Recovered ledger from {source} ({count} features)"
    return fix


def _init_metrics(project: Project) -> Callable[[], str]:
    def fix() -> str:
        metrics.init_metrics(project)
        return "Created metrics directory"
    return fix


def check_project(project: Project) -> list[RepairIssue]:
    """Project-level checks: ledger readability, orphan entries, metrics dir."""
    issues = []

    try:
        ledger = read_ledger_file(project.ledger_path)
    except LedgerCorrupted as e:
        issues.append(RepairIssue("error", f"ledger.json is corrupted: {e.details}", _recover(project)))
        ledger = Ledger()

    for feature in ledger.features:
        if feature.phase == Phase.COMPLETE:
            continue
        if not project.todo_path(feature.id).exists():
            issues.append(RepairIssue(
                "warning",
                f"Orphan ledger entry: {feature.id} (folder missing)",
                _drop_ledger_entry(project, feature.id),
            ))

    if not project.metrics_dir.exists():
        issues.append(RepairIssue("warning", "metrics/ directory missing", _init_metrics(project)))

    return issues


def check_feature(project: Project, feature_id: str) -> list[RepairIssue]:
    """Feature-level checks: folder, artifacts for the recorded phase, drift, block."""
    issues = []

    try:
        ledger = read_ledger_file(project.ledger_path)
    except LedgerCorrupted as e:
        return [RepairIssue("error", f"ledger.json is corrupted: {e.details}", _recover(project))]

    feature = ledger.get(feature_id)
    if feature is None:
        return [RepairIssue("error", f"Feature '{feature_id}' not found in ledger")]

    feature_dir = project.feature_dir(feature_id)
    if not feature_dir.exists():
        return [RepairIssue("error", "Feature folder does not exist")]

    for artifact in required_artifacts(feature.phase, feature.type):
        if not (feature_dir / artifact).exists():
            issues.append(RepairIssue("warning", f"Phase mismatch: {feature.phase.value} but {artifact} missing"))

    detected = detect_phase_from_artifacts(feature_dir, project.min_content_length)
    if PHASE_ORDER.index(detected) < PHASE_ORDER.index(feature.phase) - 1:
        issues.append(RepairIssue(
            "warning",
            f"Ledger phase '{feature.phase.value}' is ahead of artifacts (detected '{detected.value}')",
        ))

    if feature.is_blocked:
        issues.append(RepairIssue(
            "warning",
            f"Feature is blocked: {feature.blocked_reason}",
            _unblock(project, feature_id),
        ))

    return issues


def apply_fixes(project: Project, issues: list[RepairIssue], feature_id: Optional[str] = None) -> list[str]:
    """Run every available fix and log a single repair event.

    A fix that raises is logged and skipped; the others still run.
    """
    actions = []
    for issue in issues:
        if not issue.fixable:
            continue
        try:
            actions.append(issue.fix())
        except (OSError, LedgerCorrupted) as e:
            logger.error(f"[REPAIR] Failed to fix '{issue.message}': {e}")

    log_repair(project.history_path, feature_id, len(issues), len(actions), actions)
    logger.info(f"[REPAIR] {len(actions)} fix(es) applied for {len(issues)} issue(s)")
    return actions


def recover_ledger(project: Project) -> tuple[str, int]:
    """Restore ledger.json from ledger.json.bak, or reset it to empty.

    Returns:
        (source, features_recovered) where source is "backup" or "empty"
    """
    store = _store(project)
    backup = store.backup_path

    source = "empty"
    recovered = Ledger()
    if backup.exists():
        try:
            recovered = read_ledger_file(backup)
            source = "backup"
        except LedgerCorrupted as e:
            logger.warning(f"[REPAIR] Backup ledger is unusable: {e}")

    project.ledger_path.parent.mkdir(parents=True, exist_ok=True)
    if source == "backup":
        shutil.copyfile(backup, project.ledger_path)
    else:
        write_json(project.ledger_path, Ledger().to_dict())

    log_ledger_recovery(project.history_path, source, len(recovered.features))
    logger.warning(f"[REPAIR] Ledger recovered from {source} ({len(recovered.features)} features)")
    return source, len(recovered.features)

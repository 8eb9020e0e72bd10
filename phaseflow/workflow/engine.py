"""Ledger engine for feature lifecycle orchestration.

Composes the pieces of a phase change: validate -> bypass-or-reject ->
apply -> log -> refresh metrics. Structural and validation failures come
back as PhaseUpdateResult values; only corrupted stores raise.

Usage:
    from phaseflow.workflow.engine import LedgerEngine

    engine = LedgerEngine.for_project(project)
    feature = engine.add_feature("Dark mode toggle")
    result = engine.transition(feature.id, "product_refinement")
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from phaseflow.lib import archive, constants, metrics
from phaseflow.lib.artifacts import can_transition_to, detect_phase_from_artifacts, next_phase
from phaseflow.lib.config import Project, load_project, write_project_env
from phaseflow.lib.history import (
    FeatureBlocked,
    FeatureCompleted,
    FeatureCreated,
    FeatureRemoved,
    FeatureUnblocked,
    PhaseTransition,
    RetryIncremented,
    RetryReset,
    ReviewFailed,
    append_history,
    log_init,
    log_validation,
    log_validation_bypass,
)
from phaseflow.lib.models import (
    PHASE_ORDER,
    Feature,
    FeatureType,
    Ledger,
    Phase,
    create_feature,
    generate_feature_id,
    unique_feature_id,
)
from phaseflow.lib.review import review_outcome
from phaseflow.lib.store import JsonLedgerStore
from phaseflow.lib.suggest import not_found_message
from phaseflow.lib.test_parser import append_testing_session
from phaseflow.workflow.state_machine import (
    InvalidTransition,
    can_transition,
    parse_feature_type,
    parse_phase,
    transition,
)
from phaseflow.workflow.validators import ValidationResult, get_validator_for_phase

logger = logging.getLogger(__name__)


@dataclass
class PhaseUpdateResult:
    """Outcome of a validate/apply/transition call."""
    success: bool
    error: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    bypassed: bool = False
    noop: bool = False
    from_phase: Optional[Phase] = None
    to_phase: Optional[Phase] = None


@dataclass
class RetryResult:
    retry_count: int
    should_block: bool


def review_block_reason(max_retries: int) -> str:
    return f"Review failed {max_retries} times - manual intervention required"


class LedgerEngine:
    """Feature lifecycle operations over a ledger store.

    Args:
        store: Object with load() -> Ledger, save(Ledger) and locked()
        project: Paths and policy settings
        archiver: Callable(project, feature_id) moving todo/<id> to done/<id>
        remover: Callable(project, feature_id) moving todo/<id> to removed/<id>
    """

    def __init__(
        self,
        store,
        project: Project,
        archiver: Callable[[Project, str], Path] = archive.archive_feature,
        remover: Callable[[Project, str], Path] = archive.move_to_removed,
    ):
        self.store = store
        self.project = project
        self.archiver = archiver
        self.remover = remover

    @classmethod
    def for_project(cls, project: Project) -> "LedgerEngine":
        """Engine backed by the project's ledger.json with flock locking."""
        store = JsonLedgerStore(project.ledger_path, project.lock_path, project.lock_timeout)
        return cls(store, project)

    @property
    def history_path(self) -> Path:
        return self.project.history_path

    def _log(self, event) -> None:
        append_history(self.history_path, event)

    def _not_found(self, ledger: Ledger, feature_id: str) -> PhaseUpdateResult:
        return PhaseUpdateResult(
            success=False,
            error=not_found_message("Feature", feature_id, ledger.ids()),
        )

    # --- Queries ---

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        return self.store.load().get(feature_id)

    def find_feature(self, partial_id: str) -> Optional[Feature]:
        """Exact id match, else the single feature whose id contains partial_id."""
        ledger = self.store.load()
        exact = ledger.get(partial_id)
        if exact:
            return exact
        matches = [f for f in ledger.features if partial_id in f.id]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.debug(f"[LEDGER] '{partial_id}' is ambiguous: {[f.id for f in matches]}")
        return None

    def list_features(
        self,
        include_complete: bool = False,
        feature_type: FeatureType | str | None = None,
        phase: Phase | str | None = None,
    ) -> list[Feature]:
        """Features matching the filters. An unknown type or phase matches nothing."""
        type_filter = parse_feature_type(feature_type)
        phase_filter = parse_phase(phase)
        if (feature_type is not None and type_filter is None) or (phase is not None and phase_filter is None):
            logger.warning(f"[LEDGER] Unknown filter (type={feature_type!r}, phase={phase!r})")
            return []

        features = self.store.load().features
        if not include_complete:
            features = [f for f in features if f.phase != Phase.COMPLETE]
        if type_filter is not None:
            features = [f for f in features if f.type == type_filter]
        if phase_filter is not None:
            features = [f for f in features if f.phase == phase_filter]
        return features

    def active_features(self) -> list[Feature]:
        return self.list_features(include_complete=False)

    # --- Creation / removal ---

    def add_feature(
        self,
        title: str,
        feature_type: FeatureType | str = FeatureType.FEATURE,
        external_id: Optional[str] = None,
    ) -> Optional[Feature]:
        """Create a feature at phase 'created' with a unique dated id.

        Returns None (nothing written) when feature_type is not a known type.
        """
        kind = parse_feature_type(feature_type)
        if kind is None:
            logger.warning(f"[LEDGER] Not creating '{title}': unknown feature type {feature_type!r}")
            return None

        with self.store.locked():
            ledger = self.store.load()
            feature_id = unique_feature_id(generate_feature_id(title), ledger.ids())
            feature = create_feature(feature_id, title, kind, external_id)
            ledger.features.append(feature)
            self.store.save(ledger)
            self._log(FeatureCreated(
                ts=feature.created_at,
                feature_id=feature.id,
                title=feature.title,
                type=feature.type.value,
            ))
        logger.info(f"[LEDGER] Created {feature.id} ({feature.type.value})")
        metrics.update_feature_metrics(self.project, feature.id, ledger)
        return feature

    def remove_feature(self, feature_id: str) -> bool:
        """Drop a feature from the ledger and move its directory to removed/.

        The ledger entry is deleted only after the directory move succeeds.
        A feature with no active directory is removed from the ledger alone.
        """
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return False

            if self.project.todo_path(feature_id).exists():
                try:
                    self.remover(self.project, feature_id)
                except OSError as e:
                    logger.error(f"[LEDGER] Could not move {feature_id} to removed/: {e}")
                    return False

            ledger.features = [f for f in ledger.features if f.id != feature_id]
            self.store.save(ledger)
            self._log(FeatureRemoved(feature_id=feature_id))
        logger.info(f"[LEDGER] Removed {feature_id}")
        metrics.update_metrics_index(self.project, ledger)
        return True

    # --- Transitions ---

    def _check_structure(
        self, ledger: Ledger, feature_id: str, target: Phase | str,
    ) -> tuple[Optional[Feature], Optional[Phase], Optional[PhaseUpdateResult]]:
        """Resolve feature and target; return an early result for noop or structural errors."""
        feature = ledger.get(feature_id)
        if feature is None:
            return None, None, self._not_found(ledger, feature_id)

        target_phase = parse_phase(target)
        if target_phase is None:
            valid = ", ".join(p.value for p in PHASE_ORDER)
            return feature, None, PhaseUpdateResult(
                success=False,
                error=f"Invalid phase '{target}'. Valid phases: {valid}",
                from_phase=feature.phase,
            )

        if feature.phase == target_phase:
            return feature, target_phase, PhaseUpdateResult(
                success=True, noop=True, from_phase=feature.phase, to_phase=target_phase,
            )

        if not can_transition(feature.phase, target_phase):
            return feature, target_phase, PhaseUpdateResult(
                success=False,
                error=f"Cannot transition from '{feature.phase.value}' to '{target_phase.value}'",
                from_phase=feature.phase,
                to_phase=target_phase,
            )

        # Independent of the review validator: a failed review never reaches testing
        if feature.phase == Phase.REVIEW and target_phase == Phase.TESTING:
            outcome = review_outcome(self.project.feature_dir(feature_id) / constants.REVIEW_MD)
            if outcome.verdict == "fail":
                return feature, target_phase, PhaseUpdateResult(
                    success=False,
                    error="Review failed. Fix issues and re-run review before testing.",
                    from_phase=feature.phase,
                    to_phase=target_phase,
                )

        return feature, target_phase, None

    def _run_validator(self, feature: Feature) -> Optional[ValidationResult]:
        validator = get_validator_for_phase(feature.phase, feature.type, self.project.min_content_length)
        if validator is None:
            return None
        return validator.validate(self.project.feature_dir(feature.id))

    def validate_transition(self, feature_id: str, target: Phase | str) -> PhaseUpdateResult:
        """Check a move without touching the ledger or history."""
        ledger = self.store.load()
        feature, target_phase, early = self._check_structure(ledger, feature_id, target)
        if early is not None:
            return early

        result = self._run_validator(feature)
        if result is None:
            return PhaseUpdateResult(success=True, from_phase=feature.phase, to_phase=target_phase)
        return PhaseUpdateResult(
            success=result.valid,
            error=None if result.valid else "Validation failed",
            errors=result.errors,
            warnings=result.warnings,
            from_phase=feature.phase,
            to_phase=target_phase,
        )

    def _apply(self, ledger: Ledger, feature: Feature, target: Phase) -> Phase:
        """Move feature to target, save the ledger and log. Caller holds the lock."""
        from_phase = feature.phase
        transition(feature, target)
        self.store.save(ledger)
        self._log(PhaseTransition(
            ts=feature.updated_at,
            feature_id=feature.id,
            from_phase=from_phase.value,
            to_phase=target.value,
        ))
        return from_phase

    def _after_apply(self, feature_id: str, target: Phase, ledger: Ledger) -> None:
        metrics.on_phase_transition(self.project, feature_id, target.value, ledger)

    def apply_transition(self, feature_id: str, target: Phase | str) -> PhaseUpdateResult:
        """Set the phase with no validator run. Adjacency still applies."""
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return self._not_found(ledger, feature_id)
            target_phase = parse_phase(target)
            if target_phase is None:
                return PhaseUpdateResult(success=False, error=f"Invalid phase '{target}'")
            if feature.phase == target_phase:
                return PhaseUpdateResult(success=True, noop=True, from_phase=target_phase, to_phase=target_phase)
            try:
                from_phase = self._apply(ledger, feature, target_phase)
            except InvalidTransition as e:
                return PhaseUpdateResult(success=False, error=str(e), from_phase=feature.phase, to_phase=target_phase)

        self._after_apply(feature_id, target_phase, ledger)
        return PhaseUpdateResult(success=True, from_phase=from_phase, to_phase=target_phase)

    def transition(
        self,
        feature_id: str,
        target: Phase | str,
        force: bool = False,
        skip_validation: bool = False,
    ) -> PhaseUpdateResult:
        """Validate then apply a phase change.

        Args:
            feature_id: Exact feature id
            target: Destination phase
            force: Apply despite validator errors (logged as a bypass).
                Never skips phases and never overrides a failed review.
            skip_validation: Apply without running the validator; for
                internal loop-backs such as review -> implementation.
        """
        with self.store.locked():
            ledger = self.store.load()
            feature, target_phase, early = self._check_structure(ledger, feature_id, target)
            if early is not None:
                if not early.success:
                    logger.info(f"[LEDGER] {feature_id}: {early.error}")
                return early

            bypassed = False
            warnings: list[str] = []
            if not skip_validation:
                result = self._run_validator(feature)
                if result is not None:
                    warnings = result.warnings
                    if not result.valid:
                        if not force:
                            log_validation(
                                self.history_path, feature.id, target_phase.value, "failed",
                                result.errors, result.warnings,
                            )
                            return PhaseUpdateResult(
                                success=False,
                                error="Validation failed",
                                errors=result.errors,
                                warnings=result.warnings,
                                from_phase=feature.phase,
                                to_phase=target_phase,
                            )
                        log_validation_bypass(
                            self.history_path, feature.id, feature.type.value, target_phase.value,
                            result.errors, result.warnings,
                        )
                        logger.warning(
                            f"[LEDGER] {feature.id}: validation bypassed for {target_phase.value} "
                            f"({len(result.errors)} error(s) ignored)"
                        )
                        bypassed = True
                    else:
                        log_validation(
                            self.history_path, feature.id, target_phase.value, "passed",
                            None, result.warnings or None,
                        )

            from_phase = self._apply(ledger, feature, target_phase)

        self._after_apply(feature_id, target_phase, ledger)
        return PhaseUpdateResult(
            success=True,
            warnings=warnings,
            bypassed=bypassed,
            from_phase=from_phase,
            to_phase=target_phase,
        )

    # --- Block / retry ---

    def block(self, feature_id: str, reason: str) -> bool:
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return False
            feature.blocked_reason = reason
            feature.touch()
            self.store.save(ledger)
            self._log(FeatureBlocked(feature_id=feature_id, reason=reason))
        logger.warning(f"[LEDGER] Blocked {feature_id}: {reason}")
        return True

    def unblock(self, feature_id: str) -> bool:
        """Clear the block. Returns False if the feature is unknown or not blocked."""
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None or not feature.is_blocked:
                return False
            feature.blocked_reason = None
            feature.touch()
            self.store.save(ledger)
            self._log(FeatureUnblocked(feature_id=feature_id))
        logger.info(f"[LEDGER] Unblocked {feature_id}")
        return True

    def _increment(self, ledger: Ledger, feature: Feature) -> RetryResult:
        feature.retry_count += 1
        feature.touch()
        return RetryResult(
            retry_count=feature.retry_count,
            should_block=feature.retry_count >= self.project.max_review_retries,
        )

    def increment_retry(self, feature_id: str) -> Optional[RetryResult]:
        """Bump the retry counter. should_block signals the threshold; nothing is blocked here."""
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return None
            result = self._increment(ledger, feature)
            self.store.save(ledger)
            self._log(RetryIncremented(feature_id=feature_id, new_count=result.retry_count))
        return result

    def reset_retry(self, feature_id: str) -> bool:
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return False
            feature.retry_count = 0
            feature.touch()
            self.store.save(ledger)
            self._log(RetryReset(feature_id=feature_id))
        return True

    def handle_review_failure(self, feature_id: str) -> Optional[RetryResult]:
        """Count a failed review; block the feature once the retry limit is hit."""
        with self.store.locked():
            ledger = self.store.load()
            feature = ledger.get(feature_id)
            if feature is None:
                return None
            result = self._increment(ledger, feature)
            if result.should_block:
                feature.blocked_reason = review_block_reason(self.project.max_review_retries)
            self.store.save(ledger)

            self._log(RetryIncremented(feature_id=feature_id, new_count=result.retry_count))
            self._log(ReviewFailed(feature_id=feature_id, retry_count=result.retry_count))
            if result.should_block:
                self._log(FeatureBlocked(
                    feature_id=feature_id,
                    reason=feature.blocked_reason,
                    retry_count=result.retry_count,
                ))

        if result.should_block:
            logger.error(f"[LEDGER] {feature_id} blocked after {result.retry_count} failed reviews")
        else:
            logger.warning(
                f"[LEDGER] Review failed for {feature_id} "
                f"(attempt {result.retry_count}/{self.project.max_review_retries})"
            )
        return result

    def handle_review_success(self, feature_id: str) -> bool:
        """Reset a non-zero retry counter after a passing review."""
        feature = self.get_feature(feature_id)
        if feature is None or feature.retry_count == 0:
            return False
        self.reset_retry(feature_id)
        logger.info(f"[LEDGER] Retry count reset for {feature_id} after successful review")
        return True

    # --- Composite workflows ---

    def advance(self, feature_id: str, target: Phase | str | None = None, force: bool = False) -> PhaseUpdateResult:
        """Move a feature forward based on what its artifacts show.

        Without a target the destination is the phase after the one the
        artifacts prove complete, capped at one step past the ledger phase.
        A feature sitting in review with a FAIL verdict loops back to
        implementation (with retry bookkeeping) instead.
        """
        feature = self.get_feature(feature_id)
        if feature is None:
            return self._not_found(self.store.load(), feature_id)

        if feature.is_blocked and not force:
            return PhaseUpdateResult(
                success=False,
                error=f"Feature is blocked: {feature.blocked_reason}",
                from_phase=feature.phase,
            )

        target_phase = None
        if target is not None:
            target_phase = parse_phase(target)
            if target_phase is None:
                return PhaseUpdateResult(success=False, error=f"Invalid phase '{target}'", from_phase=feature.phase)

        feature_dir = self.project.feature_dir(feature_id)

        if feature.phase == Phase.REVIEW:
            verdict = review_outcome(feature_dir / constants.REVIEW_MD).verdict
            if verdict == "fail" and target_phase in (None, Phase.IMPLEMENTATION):
                retry = self.handle_review_failure(feature_id)
                if retry.should_block:
                    return PhaseUpdateResult(
                        success=False,
                        error=review_block_reason(self.project.max_review_retries),
                        from_phase=feature.phase,
                    )
                return self.transition(feature_id, Phase.IMPLEMENTATION, skip_validation=True)
            if verdict == "pass":
                self.handle_review_success(feature_id)

        if target_phase is None:
            detected = detect_phase_from_artifacts(feature_dir, self.project.min_content_length)
            target_phase = next_phase(detected)
            if target_phase is None:
                return PhaseUpdateResult(
                    success=True, noop=True, from_phase=feature.phase, to_phase=feature.phase,
                )

            current_index = PHASE_ORDER.index(feature.phase)
            target_index = PHASE_ORDER.index(target_phase)
            if target_index < current_index:
                return PhaseUpdateResult(
                    success=False,
                    error=(
                        f"Artifacts show '{detected.value}' but ledger is at "
                        f"'{feature.phase.value}'; run repair to reconcile"
                    ),
                    from_phase=feature.phase,
                )
            if target_index > current_index + 1:
                logger.debug(
                    f"[LEDGER] {feature_id}: artifacts reach {detected.value}, "
                    f"advancing one step from {feature.phase.value}"
                )
                target_phase = next_phase(feature.phase)

        if not force and target_phase != feature.phase:
            ready, reason = can_transition_to(
                feature_dir, target_phase, feature.type, self.project.min_content_length
            )
            if not ready:
                return PhaseUpdateResult(
                    success=False, error=reason, from_phase=feature.phase, to_phase=target_phase,
                )

        return self.transition(feature_id, target_phase, force=force)

    def record_test_result(self, feature_id: str, passed: bool, notes: str = "") -> PhaseUpdateResult:
        """Append a session to testing.md; a failure loops back to implementation."""
        feature = self.get_feature(feature_id)
        if feature is None:
            return self._not_found(self.store.load(), feature_id)
        if feature.phase != Phase.TESTING:
            return PhaseUpdateResult(
                success=False,
                error=f"Feature is in '{feature.phase.value}' phase, not 'testing'",
                from_phase=feature.phase,
            )

        append_testing_session(self.project.feature_dir(feature_id) / constants.TESTING_MD, passed, notes)

        if passed:
            logger.info(f"[LEDGER] Testing passed for {feature_id}")
            metrics.update_feature_metrics(self.project, feature_id, self.store.load())
            return PhaseUpdateResult(success=True, noop=True, from_phase=Phase.TESTING, to_phase=Phase.TESTING)

        logger.warning(f"[LEDGER] Testing failed for {feature_id}, returning to implementation")
        return self.transition(feature_id, Phase.IMPLEMENTATION, skip_validation=True)

    def complete_feature(self, feature_id: str, force: bool = False) -> PhaseUpdateResult:
        """Archive a feature in testing and move it to 'complete'.

        Without force the testing validator must pass before anything is
        moved. Already-archived features are not re-archived.
        """
        feature = self.get_feature(feature_id)
        if feature is None:
            return self._not_found(self.store.load(), feature_id)
        if feature.phase != Phase.TESTING:
            return PhaseUpdateResult(
                success=False,
                error=f"Feature is in '{feature.phase.value}' phase, not 'testing'",
                from_phase=feature.phase,
                to_phase=Phase.COMPLETE,
            )

        if not force:
            check = self.validate_transition(feature_id, Phase.COMPLETE)
            if not check.success:
                return check

        if self.project.todo_path(feature_id).exists():
            try:
                self.archiver(self.project, feature_id)
            except OSError as e:
                return PhaseUpdateResult(
                    success=False,
                    error=f"Failed to archive {feature_id}: {e}",
                    from_phase=feature.phase,
                    to_phase=Phase.COMPLETE,
                )

        result = self.transition(feature_id, Phase.COMPLETE, force=force)
        if not result.success:
            return result

        self._log(FeatureCompleted(
            feature_id=feature_id,
            total_phases=constants.TOTAL_PHASES,
            retry_count=feature.retry_count,
        ))
        logger.info(f"[LEDGER] Feature complete: {feature_id}")
        metrics.on_feature_complete(self.project, feature_id, self.store.load())
        return result


def init_project(root: Path, name: Optional[str] = None, client: Optional[str] = None, **settings) -> Project:
    """Create the .phaseflow state directory and content folders under root.

    Writes project.env (unless one exists), an empty ledger, the metrics
    directory, and logs an init event. Returns the loaded Project.
    """
    root = Path(root)
    if not (root / constants.STATE_DIR_NAME / constants.PROJECT_ENV_FILE).exists():
        write_project_env(root, name or root.name, **settings)
    project = load_project(root)

    if not project.ledger_path.exists():
        JsonLedgerStore(project.ledger_path).save(Ledger())
    for sub in (constants.TODO_DIR, constants.DONE_DIR):
        (project.content_dir / sub).mkdir(parents=True, exist_ok=True)

    log_init(project.history_path, project.project_id, project.name, client)
    metrics.init_metrics(project)
    logger.info(f"[LEDGER] Initialized project {project.name} at {root}")
    return project

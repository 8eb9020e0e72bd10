"""
Append-only history log.

One JSON event per line, tagged with an `event` discriminant and a `ts`
timestamp. Lines are never rewritten or deleted; the log is the only record
derived metrics are rebuilt from.

Usage:
    from phaseflow.lib.history import append_history, read_history, PhaseTransition

    append_history(path, PhaseTransition(feature_id="x", from_phase="created", to_phase="tech_spec"))
    events = read_history(path)
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import ClassVar, Optional

from phaseflow.lib import validate
from phaseflow.lib.errors import HistoryCorrupted
from phaseflow.lib.models import FeatureType, utc_now

logger = logging.getLogger(__name__)


@dataclass(kw_only=True)
class HistoryEvent:
    """Base for all history events. Subclasses set EVENT."""
    EVENT: ClassVar[str] = ""

    ts: str = ""
    feature_id: Optional[str] = None

    @property
    def event(self) -> str:
        return self.EVENT

    def to_dict(self) -> dict:
        data = {"ts": self.ts, "event": self.EVENT}
        for f in fields(self):
            if f.name == "ts":
                continue
            value = getattr(self, f.name)
            if value is not None:
                data[f.name] = value
        return data


@dataclass(kw_only=True)
class PhaseTransition(HistoryEvent):
    EVENT: ClassVar[str] = "phase_transition"
    feature_id: str
    from_phase: str
    to_phase: str


@dataclass(kw_only=True)
class Validation(HistoryEvent):
    EVENT: ClassVar[str] = "validation"
    feature_id: str
    target_phase: str
    result: str  # "passed" or "failed"
    errors: Optional[list[str]] = None
    warnings: Optional[list[str]] = None


@dataclass(kw_only=True)
class ValidationBypass(HistoryEvent):
    EVENT: ClassVar[str] = "validation_bypass"
    feature_id: str
    target_phase: str
    errors_ignored: list[str]
    warnings_ignored: Optional[list[str]] = None
    feature_type: Optional[str] = None
    bypass_method: str = "--force"


@dataclass(kw_only=True)
class FeatureCreated(HistoryEvent):
    EVENT: ClassVar[str] = "feature_created"
    feature_id: str
    title: str
    type: str


@dataclass(kw_only=True)
class FeatureCompleted(HistoryEvent):
    EVENT: ClassVar[str] = "feature_completed"
    feature_id: str
    total_phases: int
    retry_count: int


@dataclass(kw_only=True)
class FeatureBlocked(HistoryEvent):
    EVENT: ClassVar[str] = "feature_blocked"
    feature_id: str
    reason: str
    retry_count: Optional[int] = None


@dataclass(kw_only=True)
class FeatureUnblocked(HistoryEvent):
    EVENT: ClassVar[str] = "feature_unblocked"
    feature_id: str


@dataclass(kw_only=True)
class FeatureRemoved(HistoryEvent):
    EVENT: ClassVar[str] = "feature_removed"
    feature_id: str


@dataclass(kw_only=True)
class RetryIncremented(HistoryEvent):
    EVENT: ClassVar[str] = "retry_incremented"
    feature_id: str
    new_count: int


@dataclass(kw_only=True)
class RetryReset(HistoryEvent):
    EVENT: ClassVar[str] = "retry_reset"
    feature_id: str


@dataclass(kw_only=True)
class ReviewFailed(HistoryEvent):
    EVENT: ClassVar[str] = "review_failed"
    feature_id: str
    retry_count: int


@dataclass(kw_only=True)
class Repair(HistoryEvent):
    EVENT: ClassVar[str] = "repair"
    issues_found: int
    issues_fixed: int
    actions: list[str]


@dataclass(kw_only=True)
class LedgerRecovery(HistoryEvent):
    EVENT: ClassVar[str] = "ledger_recovery"
    recovery_source: str  # "backup" or "empty"
    features_recovered: int


@dataclass(kw_only=True)
class Sync(HistoryEvent):
    EVENT: ClassVar[str] = "sync"
    client: str
    commands_synced: int
    skills_synced: int
    agents_synced: int


@dataclass(kw_only=True)
class Init(HistoryEvent):
    EVENT: ClassVar[str] = "init"
    project_id: str
    project_name: str
    client: Optional[str] = None


EVENT_TYPES: dict[str, type[HistoryEvent]] = {
    cls.EVENT: cls
    for cls in (
        PhaseTransition, Validation, ValidationBypass, FeatureCreated,
        FeatureCompleted, FeatureBlocked, FeatureUnblocked, FeatureRemoved,
        RetryIncremented, RetryReset, ReviewFailed, Repair, LedgerRecovery,
        Sync, Init,
    )
}


def decode_event(data: dict) -> HistoryEvent:
    """Validate a decoded JSON object and build the matching event dataclass.

    Keys not declared on the variant are dropped.

    Raises:
        SchemaValidationError: If the object doesn't match the event schema
    """
    validate.validate(data, "history_event")
    cls = EVENT_TYPES[data["event"]]
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def append_history(history_path: Path, event: HistoryEvent) -> HistoryEvent:
    """Stamp (if needed), validate and append one event line. Returns the event."""
    if not event.ts:
        event.ts = utc_now()
    data = event.to_dict()
    validate.validate_before_write(data, "history_event", history_path)

    history_path.parent.mkdir(parents=True, exist_ok=True)
    with open(history_path, "a") as f:
        f.write(json.dumps(data) + "\n")
        f.flush()
    logger.debug(f"[HISTORY] {event.EVENT} {event.feature_id or ''}".rstrip())
    return event


def read_history(history_path: Path, strict: bool = True) -> list[HistoryEvent]:
    """Read every event in append order.

    Args:
        history_path: Path to history.log
        strict: If True (default) a malformed line aborts the whole read with
            HistoryCorrupted. If False the line is logged and skipped.

    Returns:
        Events in file order; empty list if the log doesn't exist.
    """
    if not history_path.exists():
        return []

    events = []
    for line_num, line in enumerate(history_path.read_text().splitlines(), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            if not isinstance(data, dict):
                raise ValueError("event line is not a JSON object")
            events.append(decode_event(data))
        except (json.JSONDecodeError, ValueError, TypeError, validate.SchemaValidationError) as e:
            if strict:
                raise HistoryCorrupted(line_num, str(e)) from None
            logger.warning(f"[HISTORY] Skipping malformed line {line_num} in {history_path}: {e}")
    return events


def feature_history(history_path: Path, feature_id: str, strict: bool = True) -> list[HistoryEvent]:
    """Events for a single feature, in append order."""
    return [e for e in read_history(history_path, strict) if e.feature_id == feature_id]


def validation_bypasses(history_path: Path) -> list[ValidationBypass]:
    return [e for e in read_history(history_path) if isinstance(e, ValidationBypass)]


def bypass_counts_by_type(history_path: Path) -> dict[str, int]:
    """Count validation bypasses per feature type (events without a type are skipped)."""
    counts = {t.value: 0 for t in FeatureType}
    for event in validation_bypasses(history_path):
        if event.feature_type in counts:
            counts[event.feature_type] += 1
    return counts


def log_validation(
    history_path: Path,
    feature_id: str,
    target_phase: str,
    result: str,
    errors: list[str] | None = None,
    warnings: list[str] | None = None,
) -> HistoryEvent:
    """Log a validation outcome ("passed" or "failed")."""
    return append_history(history_path, Validation(
        feature_id=feature_id,
        target_phase=target_phase,
        result=result,
        errors=errors,
        warnings=warnings,
    ))


def log_validation_bypass(
    history_path: Path,
    feature_id: str,
    feature_type: str,
    target_phase: str,
    errors_ignored: list[str],
    warnings_ignored: list[str] | None = None,
) -> HistoryEvent:
    """Log a forced transition, recording which errors/warnings were overridden."""
    return append_history(history_path, ValidationBypass(
        feature_id=feature_id,
        feature_type=feature_type,
        target_phase=target_phase,
        errors_ignored=list(errors_ignored),
        warnings_ignored=list(warnings_ignored) if warnings_ignored else None,
    ))


def log_sync(history_path: Path, client: str, commands: int, skills: int, agents: int) -> HistoryEvent:
    return append_history(history_path, Sync(
        client=client,
        commands_synced=commands,
        skills_synced=skills,
        agents_synced=agents,
    ))


def log_repair(
    history_path: Path,
    feature_id: str | None,
    issues_found: int,
    issues_fixed: int,
    actions: list[str],
) -> HistoryEvent:
    return append_history(history_path, Repair(
        feature_id=feature_id,
        issues_found=issues_found,
        issues_fixed=issues_fixed,
        actions=list(actions),
    ))


def log_init(history_path: Path, project_id: str, project_name: str, client: str | None = None) -> HistoryEvent:
    return append_history(history_path, Init(
        project_id=project_id,
        project_name=project_name,
        client=client,
    ))


def log_ledger_recovery(history_path: Path, source: str, features_recovered: int) -> HistoryEvent:
    return append_history(history_path, LedgerRecovery(
        recovery_source=source,
        features_recovered=features_recovered,
    ))

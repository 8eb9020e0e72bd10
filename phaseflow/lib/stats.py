"""
Derived feature metrics.

Replays a feature's history events (plus the session log in testing.md)
into per-phase timings, and rolls completed features up into project-wide
averages. Everything here is a pure function of its inputs; metrics.py does
the reading and writing.
"""

import logging
from dataclasses import dataclass, field
from statistics import fmean
from typing import Iterable, Optional

from phaseflow.lib.history import (
    FeatureCompleted,
    FeatureCreated,
    HistoryEvent,
    PhaseTransition,
    Validation,
    ValidationBypass,
)
from phaseflow.lib.models import PHASE_ORDER, Feature, FeatureType, Phase, ms_between, parse_ts
from phaseflow.lib.test_parser import TestingAttempt

logger = logging.getLogger(__name__)


@dataclass
class PhaseMetrics:
    """Timing for one phase. Review and testing carry extra counters."""
    entered_at: str
    exited_at: Optional[str] = None
    duration_ms: Optional[int] = None
    iterations: Optional[int] = None  # review and testing only
    fail_count: Optional[int] = None  # testing only
    pass_count: Optional[int] = None  # testing only
    history: Optional[list[TestingAttempt]] = None  # testing only

    def to_dict(self) -> dict:
        data = {"entered_at": self.entered_at}
        for key in ("exited_at", "duration_ms", "iterations", "fail_count", "pass_count"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.history is not None:
            data["history"] = [a.to_dict() for a in self.history]
        return data


@dataclass
class ValidationCounts:
    passed: int = 0
    failed: int = 0
    bypassed: int = 0


@dataclass
class FeatureMetrics:
    """Metrics for a single feature, rebuilt from scratch on every update."""
    feature_id: str
    title: str
    type: str
    created_at: str
    retry_count: int = 0
    completed_at: Optional[str] = None
    total_duration_ms: Optional[int] = None
    implementation_to_complete_ms: Optional[int] = None
    phases: dict[str, PhaseMetrics] = field(default_factory=dict)
    validations: ValidationCounts = field(default_factory=ValidationCounts)

    def to_dict(self) -> dict:
        data = {
            "feature_id": self.feature_id,
            "title": self.title,
            "type": self.type,
            "created_at": self.created_at,
        }
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at
        if self.total_duration_ms is not None:
            data["total_duration_ms"] = self.total_duration_ms
        if self.implementation_to_complete_ms is not None:
            data["implementation_to_complete_ms"] = self.implementation_to_complete_ms
        data["retry_count"] = self.retry_count
        data["phases"] = {
            p.value: self.phases[p.value].to_dict() for p in PHASE_ORDER if p.value in self.phases
        }
        data["validations"] = {
            "passed": self.validations.passed,
            "failed": self.validations.failed,
            "bypassed": self.validations.bypassed,
        }
        return data


@dataclass
class AggregatedMetrics:
    """Project-wide rollup. Averages only cover completed features."""
    updated_at: str
    done: int
    todo: int
    by_type: dict[str, dict[str, int]]
    averages: dict[str, float] = field(default_factory=dict)
    phase_averages: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "updated_at": self.updated_at,
            "totals": {"done": self.done, "todo": self.todo, "by_type": self.by_type},
            "averages": self.averages,
            "phase_averages": self.phase_averages,
        }


@dataclass
class MetricsIndex:
    version: str
    last_updated: str
    feature_count: int
    completed_count: int

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "last_updated": self.last_updated,
            "feature_count": self.feature_count,
            "completed_count": self.completed_count,
        }


def _close_phase(metrics: FeatureMetrics, phase: str, entered_at: str, exited_at: str) -> None:
    """Record an exit from `phase`, keeping any counters gathered so far."""
    duration = ms_between(entered_at, exited_at)
    existing = metrics.phases.get(phase)

    if phase == Phase.TESTING.value:
        metrics.phases[phase] = PhaseMetrics(
            entered_at=entered_at,
            exited_at=exited_at,
            duration_ms=duration,
            iterations=(existing and existing.iterations) or 0,
            fail_count=(existing and existing.fail_count) or 0,
            pass_count=(existing and existing.pass_count) or 0,
            history=(existing and existing.history) or [],
        )
    elif phase == Phase.REVIEW.value:
        metrics.phases[phase] = PhaseMetrics(
            entered_at=entered_at,
            exited_at=exited_at,
            duration_ms=duration,
            iterations=(existing and existing.iterations) or 1,
        )
    else:
        metrics.phases[phase] = PhaseMetrics(entered_at=entered_at, exited_at=exited_at, duration_ms=duration)


def calculate_feature_metrics(
    feature: Feature,
    events: Iterable[HistoryEvent],
    testing_attempts: Optional[list[TestingAttempt]] = None,
) -> FeatureMetrics:
    """Replay history into FeatureMetrics.

    Args:
        feature: Ledger entry (supplies title, type, created_at, retry_count)
        events: History events; those for other features are ignored
        testing_attempts: Sessions parsed from testing.md. When present they
            override the testing iteration/pass/fail counters.

    Events are processed in timestamp order (stable for equal timestamps).
    A review -> implementation loop-back adds a review iteration.
    """
    metrics = FeatureMetrics(
        feature_id=feature.id,
        title=feature.title,
        type=FeatureType(feature.type).value,
        created_at=feature.created_at,
        retry_count=feature.retry_count,
    )

    own_events = [e for e in events if e.feature_id == feature.id]
    own_events.sort(key=lambda e: parse_ts(e.ts))

    entry_times: dict[str, str] = {}

    for event in own_events:
        if isinstance(event, FeatureCreated):
            entry_times[Phase.CREATED.value] = event.ts
            metrics.phases[Phase.CREATED.value] = PhaseMetrics(entered_at=event.ts)

        elif isinstance(event, PhaseTransition):
            if event.from_phase in entry_times:
                _close_phase(metrics, event.from_phase, entry_times[event.from_phase], event.ts)

            entry_times[event.to_phase] = event.ts

            if event.to_phase == Phase.COMPLETE.value:
                metrics.phases[Phase.COMPLETE.value] = PhaseMetrics(entered_at=event.ts)

            if event.from_phase == Phase.REVIEW.value and event.to_phase == Phase.IMPLEMENTATION.value:
                review = metrics.phases.get(Phase.REVIEW.value)
                metrics.phases[Phase.REVIEW.value] = PhaseMetrics(
                    entered_at=review.entered_at if review else event.ts,
                    exited_at=review.exited_at if review else None,
                    duration_ms=review.duration_ms if review else None,
                    iterations=((review and review.iterations) or 0) + 1,
                )

        elif isinstance(event, Validation):
            if event.result == "passed":
                metrics.validations.passed += 1
            elif event.result == "failed":
                metrics.validations.failed += 1

        elif isinstance(event, ValidationBypass):
            metrics.validations.bypassed += 1

        elif isinstance(event, FeatureCompleted):
            metrics.completed_at = event.ts
            if Phase.COMPLETE.value in entry_times:
                metrics.phases[Phase.COMPLETE.value] = PhaseMetrics(entered_at=entry_times[Phase.COMPLETE.value])

    if testing_attempts:
        existing = metrics.phases.get(Phase.TESTING.value)
        metrics.phases[Phase.TESTING.value] = PhaseMetrics(
            entered_at=existing.entered_at if existing else testing_attempts[0].started_at,
            exited_at=existing.exited_at if existing else None,
            duration_ms=existing.duration_ms if existing else None,
            iterations=len(testing_attempts),
            fail_count=sum(1 for a in testing_attempts if a.result == "fail"),
            pass_count=sum(1 for a in testing_attempts if a.result == "pass"),
            history=list(testing_attempts),
        )

    if metrics.completed_at:
        metrics.total_duration_ms = ms_between(metrics.created_at, metrics.completed_at)
        impl_entered = entry_times.get(Phase.IMPLEMENTATION.value)
        if impl_entered:
            metrics.implementation_to_complete_ms = ms_between(impl_entered, metrics.completed_at)

    return metrics


def _average(values: Iterable[Optional[float]]) -> Optional[float]:
    defined = [v for v in values if v is not None]
    if not defined:
        return None
    return fmean(defined)


def _phase_value(m: FeatureMetrics, phase: Phase, attr: str) -> Optional[float]:
    pm = m.phases.get(phase.value)
    return getattr(pm, attr) if pm else None


def calculate_aggregated_metrics(
    features: list[Feature],
    metrics_by_id: dict[str, FeatureMetrics],
    updated_at: str,
) -> AggregatedMetrics:
    """Roll features up into totals and averages.

    Features are split on phase == complete. Averages only include completed
    features whose metrics carry completed_at; an average with no samples is
    left out.
    """
    by_type = {t.value: {"done": 0, "todo": 0} for t in FeatureType}
    done = []
    todo = 0
    for f in features:
        type_key = FeatureType(f.type).value
        if f.phase == Phase.COMPLETE:
            done.append(f)
            by_type[type_key]["done"] += 1
        else:
            todo += 1
            by_type[type_key]["todo"] += 1

    completed = [
        metrics_by_id[f.id] for f in done
        if f.id in metrics_by_id and metrics_by_id[f.id].completed_at
    ]

    averages = {
        "total_duration_ms": _average(m.total_duration_ms for m in completed),
        "implementation_to_complete_ms": _average(m.implementation_to_complete_ms for m in completed),
        "implementation_duration_ms": _average(_phase_value(m, Phase.IMPLEMENTATION, "duration_ms") for m in completed),
        "testing_iterations": _average(_phase_value(m, Phase.TESTING, "iterations") for m in completed),
        "testing_fail_count": _average(_phase_value(m, Phase.TESTING, "fail_count") for m in completed),
    }
    phase_averages = {
        f"{phase.value}_ms": _average(_phase_value(m, phase, "duration_ms") for m in completed)
        for phase in (Phase.PRODUCT_REFINEMENT, Phase.TECH_SPEC, Phase.IMPLEMENTATION, Phase.REVIEW, Phase.TESTING)
    }

    return AggregatedMetrics(
        updated_at=updated_at,
        done=len(done),
        todo=todo,
        by_type=by_type,
        averages={k: v for k, v in averages.items() if v is not None},
        phase_averages={k: v for k, v in phase_averages.items() if v is not None},
    )


def format_duration(ms: float) -> str:
    """Format milliseconds as human-readable duration."""
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    if hours < 48:
        return f"{hours}h {mins}m"
    return f"{hours // 24}d {hours % 24}h"

"""
Metrics writers.

Rebuilds the derived files under .phaseflow/metrics/ from the ledger and
history log:

    metrics/features/<id>.json   per-feature replay (stats.calculate_feature_metrics)
    metrics/aggregated.json      project rollup
    metrics/index.json           counts and version

Metrics are derived state: every public function here logs and swallows
its own failures so a broken metrics file never undoes a ledger change.
Timestamps written into these files come from the history log, so
rebuilding from unchanged inputs produces identical bytes.
"""

import logging
from typing import Optional

from phaseflow.lib import constants, validate
from phaseflow.lib.config import Project, write_json
from phaseflow.lib.history import HistoryEvent, read_history
from phaseflow.lib.models import Feature, Ledger, Phase, parse_ts, utc_now
from phaseflow.lib.stats import (
    FeatureMetrics,
    MetricsIndex,
    calculate_aggregated_metrics,
    calculate_feature_metrics,
)
from phaseflow.lib.store import read_ledger_file
from phaseflow.lib.test_parser import TestingAttempt, parse_testing_sessions

logger = logging.getLogger(__name__)


def _load_ledger(project: Project, ledger: Optional[Ledger]) -> Ledger:
    return ledger if ledger is not None else read_ledger_file(project.ledger_path)


def latest_timestamp(events: list[HistoryEvent], features: list[Feature]) -> str:
    """Most recent history timestamp, else most recent feature update.

    Only an empty project falls back to the current time.
    """
    stamps = [e.ts for e in events] or [f.updated_at for f in features]
    if not stamps:
        return utc_now()
    return max(stamps, key=parse_ts)


def testing_attempts_for(project: Project, feature_id: str) -> list[TestingAttempt]:
    testing_path = project.feature_dir(feature_id) / constants.TESTING_MD
    if not testing_path.exists():
        return []
    return parse_testing_sessions(testing_path.read_text())


def compute_feature_metrics(project: Project, feature: Feature, events: list[HistoryEvent]) -> FeatureMetrics:
    return calculate_feature_metrics(feature, events, testing_attempts_for(project, feature.id))


def _write_feature_metrics(project: Project, metrics: FeatureMetrics) -> None:
    path = project.feature_metrics_path(metrics.feature_id)
    data = metrics.to_dict()
    validate.validate_before_write(data, "feature_metrics", path)
    write_json(path, data)


def _write_index(project: Project, ledger: Ledger, events: list[HistoryEvent]) -> None:
    index = MetricsIndex(
        version=constants.METRICS_VERSION,
        last_updated=latest_timestamp(events, ledger.features),
        feature_count=len(ledger.features),
        completed_count=sum(1 for f in ledger.features if f.phase == Phase.COMPLETE),
    )
    data = index.to_dict()
    validate.validate_before_write(data, "metrics_index", project.metrics_index_path)
    write_json(project.metrics_index_path, data)


def update_feature_metrics(project: Project, feature_id: str, ledger: Optional[Ledger] = None) -> None:
    """Recompute and write metrics/features/<id>.json, then the index."""
    try:
        ledger = _load_ledger(project, ledger)
        feature = ledger.get(feature_id)
        if feature is None:
            logger.warning(f"[METRICS] Feature {feature_id} not in ledger, skipping metrics")
            return
        events = read_history(project.history_path)
        _write_feature_metrics(project, compute_feature_metrics(project, feature, events))
        _write_index(project, ledger, events)
    except Exception as e:
        logger.warning(f"[METRICS] Failed to update metrics for {feature_id}: {e}")


def update_aggregates(project: Project, ledger: Optional[Ledger] = None) -> None:
    """Recompute and write metrics/aggregated.json."""
    try:
        ledger = _load_ledger(project, ledger)
        events = read_history(project.history_path)
        metrics_by_id = {
            f.id: compute_feature_metrics(project, f, events)
            for f in ledger.features if f.phase == Phase.COMPLETE
        }
        aggregated = calculate_aggregated_metrics(
            ledger.features, metrics_by_id, latest_timestamp(events, ledger.features),
        )
        data = aggregated.to_dict()
        validate.validate_before_write(data, "aggregated_metrics", project.aggregated_metrics_path)
        write_json(project.aggregated_metrics_path, data)
    except Exception as e:
        logger.warning(f"[METRICS] Failed to update aggregated metrics: {e}")


def update_metrics_index(project: Project, ledger: Optional[Ledger] = None) -> None:
    try:
        ledger = _load_ledger(project, ledger)
        _write_index(project, ledger, read_history(project.history_path))
    except Exception as e:
        logger.warning(f"[METRICS] Failed to update metrics index: {e}")


def rebuild_metrics(project: Project, ledger: Optional[Ledger] = None) -> None:
    """Regenerate every metrics file from the ledger and history."""
    try:
        ledger = _load_ledger(project, ledger)
    except Exception as e:
        logger.warning(f"[METRICS] Cannot rebuild metrics: {e}")
        return
    for feature in ledger.features:
        update_feature_metrics(project, feature.id, ledger)
    update_aggregates(project, ledger)
    update_metrics_index(project, ledger)


def init_metrics(project: Project) -> None:
    """Create the metrics directories and seed aggregated.json / index.json if absent."""
    try:
        project.metrics_features_dir.mkdir(parents=True, exist_ok=True)
        if not project.aggregated_metrics_path.exists():
            update_aggregates(project)
        if not project.metrics_index_path.exists():
            update_metrics_index(project)
    except Exception as e:
        logger.warning(f"[METRICS] Failed to initialize metrics: {e}")


def on_phase_transition(project: Project, feature_id: str, to_phase: str, ledger: Optional[Ledger] = None) -> None:
    """Hook after a phase change. Entering 'complete' also refreshes aggregates."""
    update_feature_metrics(project, feature_id, ledger)
    if to_phase == Phase.COMPLETE.value:
        update_aggregates(project, ledger)


def on_feature_complete(project: Project, feature_id: str, ledger: Optional[Ledger] = None) -> None:
    update_feature_metrics(project, feature_id, ledger)
    update_aggregates(project, ledger)

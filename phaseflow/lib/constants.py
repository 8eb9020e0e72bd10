"""Shared constants for phaseflow."""

# Project layout
STATE_DIR_NAME = ".phaseflow"
DEFAULT_CONTENT_DIR = "phaseflow"
PROJECT_ENV_FILE = "project.env"
LEDGER_FILE = "state/ledger.json"
HISTORY_FILE = "state/history.log"
METRICS_DIR = "metrics"
METRICS_FEATURES_DIR = "metrics/features"
AGGREGATED_METRICS_FILE = "metrics/aggregated.json"
METRICS_INDEX_FILE = "metrics/index.json"
METRICS_VERSION = "1.0.0"

TODO_DIR = "todo"
DONE_DIR = "done"
REMOVED_DIR = "removed"

# Artifact paths, relative to a feature directory
INITIALIZATION_MD = "planning/initialization.md"
INVESTIGATION_MD = "planning/investigation.md"
REQUIREMENTS_MD = "planning/requirements.md"
SPEC_MD = "spec.md"
TASKS_MD = "tasks.md"
REVIEW_MD = "review.md"
TESTING_MD = "testing.md"
SUMMARY_MD = "summary.md"
ATTACHMENTS_DIR = "attachments"

REVIEW_VERDICT_HEADER = "## Verdict"

# Policy defaults
MAX_REVIEW_RETRIES = 5
MIN_CONTENT_LENGTH = 10
LOCK_TIMEOUT = 30
TOTAL_PHASES = 7

# Feature ID slug cap (YYYYMMDD_<slug>)
MAX_SLUG_LEN = 30

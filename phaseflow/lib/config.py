"""
Configuration and path resolution for phaseflow projects.

A project root contains a hidden state directory (.phaseflow/) holding
project.env, the ledger, the history log and derived metrics, plus a
visible content directory holding todo/, done/ and removed/ feature folders.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from phaseflow.lib import constants, envparse
from phaseflow.lib.errors import ConfigInvalid, NotInitialized

logger = logging.getLogger(__name__)


@dataclass
class Project:
    """Project-level configuration from .phaseflow/project.env plus derived paths."""
    root: Path
    name: str = ""
    project_id: str = ""
    content_dir_name: str = constants.DEFAULT_CONTENT_DIR
    max_review_retries: int = constants.MAX_REVIEW_RETRIES
    min_content_length: int = constants.MIN_CONTENT_LENGTH
    lock_timeout: int = constants.LOCK_TIMEOUT

    @property
    def state_dir(self) -> Path:
        return self.root / constants.STATE_DIR_NAME

    @property
    def content_dir(self) -> Path:
        return self.root / self.content_dir_name

    @property
    def env_path(self) -> Path:
        return self.state_dir / constants.PROJECT_ENV_FILE

    @property
    def ledger_path(self) -> Path:
        return self.state_dir / constants.LEDGER_FILE

    @property
    def history_path(self) -> Path:
        return self.state_dir / constants.HISTORY_FILE

    @property
    def lock_path(self) -> Path:
        return self.state_dir / "locks" / "ledger.lock"

    @property
    def metrics_dir(self) -> Path:
        return self.state_dir / constants.METRICS_DIR

    @property
    def metrics_features_dir(self) -> Path:
        return self.state_dir / constants.METRICS_FEATURES_DIR

    @property
    def aggregated_metrics_path(self) -> Path:
        return self.state_dir / constants.AGGREGATED_METRICS_FILE

    @property
    def metrics_index_path(self) -> Path:
        return self.state_dir / constants.METRICS_INDEX_FILE

    def feature_metrics_path(self, feature_id: str) -> Path:
        return self.metrics_features_dir / f"{feature_id}.json"

    def todo_path(self, feature_id: str) -> Path:
        return self.content_dir / constants.TODO_DIR / feature_id

    def done_path(self, feature_id: str) -> Path:
        return self.content_dir / constants.DONE_DIR / feature_id

    def removed_path(self, feature_id: str) -> Path:
        return self.content_dir / constants.REMOVED_DIR / feature_id

    def feature_dir(self, feature_id: str) -> Path:
        """Resolve a feature's working directory.

        Prefers the active (todo/) directory; falls back to the archive
        (done/) once the feature has been moved there.
        """
        todo = self.todo_path(feature_id)
        if todo.exists():
            return todo
        done = self.done_path(feature_id)
        if done.exists():
            return done
        return todo


def _int_setting(env: dict[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigInvalid(f"{key} must be an integer, got '{raw}'") from None
    if value < 0:
        raise ConfigInvalid(f"{key} must be non-negative, got {value}")
    return value


def load_project(root: Path) -> Project:
    """Load project.env under root and return a Project. Missing file -> defaults."""
    root = Path(root)
    env_path = root / constants.STATE_DIR_NAME / constants.PROJECT_ENV_FILE
    try:
        env = envparse.load_env(env_path)
    except ValueError as e:
        raise ConfigInvalid(f"{env_path}: {e}") from None

    return Project(
        root=root,
        name=env.get("PROJECT_NAME", root.name),
        project_id=env.get("PROJECT_ID", ""),
        content_dir_name=env.get("CONTENT_DIR", constants.DEFAULT_CONTENT_DIR),
        max_review_retries=_int_setting(env, "MAX_REVIEW_RETRIES", constants.MAX_REVIEW_RETRIES),
        min_content_length=_int_setting(env, "MIN_CONTENT_LENGTH", constants.MIN_CONTENT_LENGTH),
        lock_timeout=_int_setting(env, "LOCK_TIMEOUT", constants.LOCK_TIMEOUT),
    )


def write_project_env(root: Path, name: str, **settings: Any) -> Path:
    """Write .phaseflow/project.env for a project. Returns the file path.

    Extra keyword settings are upper-cased into env keys
    (e.g. max_review_retries=3 -> MAX_REVIEW_RETRIES="3").
    """
    env_path = Path(root) / constants.STATE_DIR_NAME / constants.PROJECT_ENV_FILE
    values = {"PROJECT_NAME": name, "PROJECT_ID": str(uuid.uuid4())}
    for key, value in settings.items():
        values[key.upper()] = str(value)
    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.write_text(envparse.format_env(values))
    return env_path


def find_project_root(start_dir: Path | None = None) -> Path | None:
    """Walk up from start_dir looking for a .phaseflow directory."""
    current = Path(start_dir or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / constants.STATE_DIR_NAME).is_dir():
            return candidate
    return None


def require_project(start_dir: Path | None = None) -> Project:
    """Find and load the enclosing project, or raise NotInitialized."""
    root = find_project_root(start_dir)
    if root is None:
        raise NotInitialized(str(start_dir or Path.cwd()))
    return load_project(root)


def write_json(path: Path, data: Any) -> None:
    """Write JSON with 2-space indent and a trailing newline."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n")

"""Shared fixtures: initialized projects, engines and artifact writers."""

import pytest

from phaseflow.lib import constants
from phaseflow.lib.store import InMemoryLedgerStore
from phaseflow.workflow.engine import LedgerEngine, init_project

INIT = "# Dark mode\n\nUsers want a dark theme.\n"
INVESTIGATION = "# Investigation\n\nRoot cause: stale cache.\n"
REQUIREMENTS = "# Requirements\n\n- Toggle in settings\n"
SPEC = "# Dark mode\n\nUse CSS variables for colors.\n"
TASKS_OPEN = "# Tasks\n\n- [x] Add variables\n- [ ] Add toggle\n"
TASKS_DONE = "# Tasks\n\n- [x] Add variables\n- [x] Add toggle\n"
REVIEW_PASS = "# Review\n\n## Verdict\n\nPASS\n"
REVIEW_FAIL = "# Review\n\n## Verdict\n\nFAIL\n"
TESTING_PASS = "# Testing\n\nRegression checks done.\nStatus: pass\n"

# Artifacts that satisfy the validator guarding each phase
PHASE_ARTIFACTS = {
    "created": {constants.INITIALIZATION_MD: INIT, constants.INVESTIGATION_MD: INVESTIGATION},
    "product_refinement": {constants.REQUIREMENTS_MD: REQUIREMENTS},
    "tech_spec": {constants.SPEC_MD: SPEC, constants.TASKS_MD: TASKS_OPEN},
    "implementation": {constants.TASKS_MD: TASKS_DONE},
    "review": {constants.REVIEW_MD: REVIEW_PASS},
    "testing": {constants.TESTING_MD: TESTING_PASS},
}


class ArtifactWriter:
    """Writes artifact files into a project's feature directories."""

    def __init__(self, project):
        self.project = project

    def write(self, feature_id, rel, text):
        path = self.project.todo_path(feature_id) / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def complete(self, feature_id, phase):
        """Write what the validator for leaving `phase` needs."""
        for rel, text in PHASE_ARTIFACTS[phase].items():
            self.write(feature_id, rel, text)

    def through(self, feature_id, phase):
        """Satisfy every phase up to and including `phase`."""
        for name in PHASE_ARTIFACTS:
            self.complete(feature_id, name)
            if name == phase:
                break


@pytest.fixture
def project(tmp_path):
    """An initialized project rooted at tmp_path."""
    return init_project(tmp_path, "demo")


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def engine(store, project):
    """Engine over an in-memory ledger; history and metrics go to the tmp project."""
    return LedgerEngine(store, project)


@pytest.fixture
def file_engine(project):
    """Engine over the project's ledger.json."""
    return LedgerEngine.for_project(project)


@pytest.fixture
def artifacts(project):
    return ArtifactWriter(project)

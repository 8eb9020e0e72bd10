"""Tests for consistency checks and repairs."""

import shutil

import pytest

from phaseflow.lib import constants
from phaseflow.lib.history import FeatureRemoved, LedgerRecovery, Repair, read_history
from phaseflow.lib.models import FeatureType, Phase
from phaseflow.lib.repair import (
    apply_fixes,
    check_feature,
    check_project,
    recover_ledger,
    required_artifacts,
)
from phaseflow.lib.store import read_ledger_file


class TestRequiredArtifacts:
    """Tests for required_artifacts."""

    def test_feature_needs_requirements(self):
        """Features past refinement need requirements.md."""
        assert constants.REQUIREMENTS_MD in required_artifacts(Phase.TECH_SPEC, FeatureType.FEATURE)

    def test_task_skips_requirements(self):
        """Tasks never need requirements.md."""
        assert constants.REQUIREMENTS_MD not in required_artifacts(Phase.REVIEW, FeatureType.TASK)


class TestCheckProject:
    """Tests for check_project."""

    def test_clean_project(self, project):
        """A fresh project should have no issues."""
        assert check_project(project) == []

    def test_orphan_entry(self, file_engine, project):
        """An active entry without a folder should be reported and fixable."""
        feature = file_engine.add_feature("Ghost")
        issues = check_project(project)
        assert len(issues) == 1
        assert "Orphan" in issues[0].message

        actions = apply_fixes(project, issues)
        assert actions == [f"Removed orphan ledger entry {feature.id}"]
        assert file_engine.get_feature(feature.id) is None
        repair = [e for e in read_history(project.history_path) if isinstance(e, Repair)][-1]
        assert (repair.issues_found, repair.issues_fixed) == (1, 1)
        removed = [e for e in read_history(project.history_path) if isinstance(e, FeatureRemoved)]
        assert [e.feature_id for e in removed] == [feature.id]

    def test_missing_metrics_dir(self, project):
        """A deleted metrics directory should be recreated by the fix."""
        shutil.rmtree(project.metrics_dir)
        issues = check_project(project)
        assert [i.message for i in issues] == ["metrics/ directory missing"]
        apply_fixes(project, issues)
        assert project.metrics_features_dir.is_dir()

    def test_corrupted_ledger(self, project):
        """A corrupted ledger should be reported with a recovery fix."""
        project.ledger_path.write_text("{oops")
        issues = check_project(project)
        assert issues[0].level == "error"
        assert issues[0].fixable


class TestCheckFeature:
    """Tests for check_feature."""

    def test_unknown_feature(self, project):
        """Unknown ids should be a single unfixable error."""
        issues = check_feature(project, "missing")
        assert len(issues) == 1
        assert not issues[0].fixable

    def test_missing_folder(self, file_engine, project):
        """A ledger entry without a folder should be an error."""
        feature = file_engine.add_feature("A")
        assert check_feature(project, feature.id)[0].message == "Feature folder does not exist"

    def test_drift_and_missing_artifacts(self, file_engine, project, artifacts):
        """A ledger phase ahead of the artifacts should be reported."""
        feature = file_engine.add_feature("A")
        artifacts.complete(feature.id, "created")
        for phase in (Phase.PRODUCT_REFINEMENT, Phase.TECH_SPEC, Phase.IMPLEMENTATION):
            file_engine.transition(feature.id, phase, force=True)
        messages = [i.message for i in check_feature(project, feature.id)]
        assert any("requirements.md missing" in m for m in messages)
        assert any("ahead of artifacts" in m for m in messages)

    def test_blocked_feature_fix(self, file_engine, project, artifacts):
        """A blocked feature should be reported and unblocked by the fix."""
        feature = file_engine.add_feature("A")
        artifacts.complete(feature.id, "created")
        file_engine.block(feature.id, "waiting")
        issues = check_feature(project, feature.id)
        assert [i.message for i in issues] == ["Feature is blocked: waiting"]
        apply_fixes(project, issues, feature.id)
        assert file_engine.get_feature(feature.id).blocked_reason is None


class TestRecoverLedger:
    """Tests for recover_ledger."""

    def test_restores_backup(self, file_engine, project):
        """A corrupted ledger should be restored from ledger.json.bak."""
        file_engine.add_feature("A")
        file_engine.add_feature("B")
        project.ledger_path.write_text("{oops")
        source, count = recover_ledger(project)
        assert (source, count) == ("backup", 1)
        assert len(read_ledger_file(project.ledger_path).features) == 1
        recovery = [e for e in read_history(project.history_path) if isinstance(e, LedgerRecovery)]
        assert recovery[0].recovery_source == "backup"

    def test_resets_without_backup(self, project):
        """Without a usable backup the ledger should be reset to empty."""
        project.ledger_path.write_text("{oops")
        source, count = recover_ledger(project)
        assert (source, count) == ("empty", 0)
        assert read_ledger_file(project.ledger_path).features == []

    @pytest.mark.parametrize("backup_text", ["{also broken", '{"features": [{"id": ""}]}'])
    def test_unusable_backup(self, project, backup_text):
        """A broken backup should fall through to an empty ledger."""
        project.ledger_path.with_name("ledger.json.bak").write_text(backup_text)
        project.ledger_path.write_text("{oops")
        assert recover_ledger(project)[0] == "empty"

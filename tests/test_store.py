"""Tests for ledger persistence."""

import json

import pytest

from phaseflow.lib.errors import LedgerCorrupted
from phaseflow.lib.models import Ledger, Phase, create_feature
from phaseflow.lib.store import InMemoryLedgerStore, JsonLedgerStore, read_ledger_file
from phaseflow.lib.validate import SchemaValidationError


def sample_ledger(*ids):
    return Ledger(features=[create_feature(i, i.title()) for i in ids])


class TestReadLedgerFile:
    """Tests for read_ledger_file."""

    def test_missing_file_is_empty(self, tmp_path):
        """A missing ledger should load as empty."""
        assert read_ledger_file(tmp_path / "ledger.json").features == []

    def test_invalid_json(self, tmp_path):
        """Garbage JSON should raise LedgerCorrupted with a repair suggestion."""
        path = tmp_path / "ledger.json"
        path.write_text("{oops")
        with pytest.raises(LedgerCorrupted) as exc:
            read_ledger_file(path)
        assert exc.value.code == "LEDGER_CORRUPTED"
        assert exc.value.suggestions

    def test_schema_mismatch(self, tmp_path):
        """A document with a bad phase should raise LedgerCorrupted."""
        data = sample_ledger("a").to_dict()
        data["features"][0]["phase"] = "shipping"
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps(data))
        with pytest.raises(LedgerCorrupted):
            read_ledger_file(path)

    def test_duplicate_ids(self, tmp_path):
        """Duplicate feature ids should be treated as corruption."""
        data = sample_ledger("a").to_dict()
        data["features"].append(dict(data["features"][0]))
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps(data))
        with pytest.raises(LedgerCorrupted, match="duplicate"):
            read_ledger_file(path)


class TestJsonLedgerStore:
    """Tests for JsonLedgerStore."""

    @pytest.fixture
    def store(self, tmp_path):
        """A store with a lock file under the state directory."""
        return JsonLedgerStore(tmp_path / "state" / "ledger.json", tmp_path / "locks" / "ledger.lock", 1)

    def test_save_then_load(self, store):
        """Saved features should load back in order."""
        store.save(sample_ledger("b", "a"))
        assert [f.id for f in store.load().features] == ["b", "a"]

    def test_two_space_indent(self, store):
        """The file should be pretty-printed with a trailing newline."""
        store.save(sample_ledger("a"))
        text = store.ledger_path.read_text()
        assert text.startswith('{\n  "features"')
        assert text.endswith("}\n")

    def test_backup_holds_previous_version(self, store):
        """Saving should copy the previous good document to .bak."""
        store.save(sample_ledger("a"))
        store.save(sample_ledger("a", "b"))
        backup = read_ledger_file(store.backup_path)
        assert backup.ids() == {"a"}
        assert not store.ledger_path.with_name("ledger.json.tmp").exists()

    def test_corrupted_current_not_backed_up(self, store):
        """A corrupted current file should not overwrite a good backup."""
        store.save(sample_ledger("a"))
        store.save(sample_ledger("a", "b"))
        store.ledger_path.write_text("{oops")
        store.save(sample_ledger("c"))
        assert read_ledger_file(store.backup_path).ids() == {"a"}

    def test_refuses_invalid_write(self, store):
        """An invalid ledger should never reach disk."""
        ledger = sample_ledger("a")
        ledger.features[0].retry_count = -1
        with pytest.raises(SchemaValidationError):
            store.save(ledger)
        assert not store.ledger_path.exists()

    def test_locked_creates_lock_file(self, store):
        """locked() should take the flock on the configured path."""
        with store.locked():
            assert store.lock_path.exists()

    def test_locked_without_lock_path(self, tmp_path):
        """A store without a lock path should still support locked()."""
        store = JsonLedgerStore(tmp_path / "ledger.json")
        with store.locked():
            store.save(Ledger())
        assert store.load().features == []


class TestInMemoryLedgerStore:
    """Tests for InMemoryLedgerStore."""

    def test_loads_are_independent(self):
        """Mutating a loaded ledger should not change the store."""
        store = InMemoryLedgerStore(sample_ledger("a"))
        ledger = store.load()
        ledger.features[0].phase = Phase.REVIEW
        assert store.load().features[0].phase == Phase.CREATED

    def test_save_counts(self):
        """Each save should be counted."""
        store = InMemoryLedgerStore()
        store.save(sample_ledger("a"))
        assert store.save_count == 1
        assert store.load().ids() == {"a"}

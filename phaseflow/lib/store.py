"""
Ledger persistence.

The ledger is read and written as a whole document. JsonLedgerStore keeps
it in .phaseflow/state/ledger.json, validated against ledger.schema.json on
every load and save, with the previous good document kept as ledger.json.bak.
InMemoryLedgerStore offers the same interface for tests.
"""

import json
import logging
import os
import shutil
from contextlib import contextmanager, nullcontext
from pathlib import Path

from phaseflow.lib import validate
from phaseflow.lib.errors import LedgerCorrupted
from phaseflow.lib.locking import ledger_lock
from phaseflow.lib.models import Ledger

logger = logging.getLogger(__name__)


def backup_path(ledger_path: Path) -> Path:
    return ledger_path.with_name(ledger_path.name + ".bak")


def parse_ledger(data: dict, source: str = "ledger") -> Ledger:
    """Validate a decoded ledger document and build the Ledger.

    Raises:
        LedgerCorrupted: On schema mismatch or duplicate feature ids
    """
    try:
        validate.validate(data, "ledger")
    except validate.SchemaValidationError as e:
        raise LedgerCorrupted(f"{source}: {e}") from None

    ledger = Ledger.from_dict(data)
    if len(ledger.ids()) != len(ledger.features):
        raise LedgerCorrupted(f"{source}: duplicate feature ids")
    return ledger


def read_ledger_file(path: Path) -> Ledger:
    """Load and validate a ledger file. A missing file is an empty ledger."""
    if not path.exists():
        return Ledger()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise LedgerCorrupted(f"{path}: invalid JSON: {e}") from None
    return parse_ledger(data, str(path))


class JsonLedgerStore:
    """File-backed ledger store."""

    def __init__(self, ledger_path: Path, lock_path: Path | None = None, lock_timeout: float = 30):
        self.ledger_path = ledger_path
        self.lock_path = lock_path
        self.lock_timeout = lock_timeout

    @property
    def backup_path(self) -> Path:
        return backup_path(self.ledger_path)

    def load(self) -> Ledger:
        return read_ledger_file(self.ledger_path)

    def save(self, ledger: Ledger) -> None:
        data = ledger.to_dict()
        validate.validate_before_write(data, "ledger", self.ledger_path)

        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_current()

        tmp_path = self.ledger_path.with_name(self.ledger_path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2) + "\n")
        os.replace(tmp_path, self.ledger_path)
        logger.debug(f"[LEDGER] Saved {len(ledger.features)} feature(s) to {self.ledger_path}")

    def _backup_current(self) -> None:
        """Copy the current file to .bak, but only if it is still a good ledger."""
        if not self.ledger_path.exists():
            return
        try:
            read_ledger_file(self.ledger_path)
        except LedgerCorrupted as e:
            logger.warning(f"[LEDGER] Not backing up corrupted ledger: {e}")
            return
        shutil.copyfile(self.ledger_path, self.backup_path)

    def locked(self):
        if self.lock_path is None:
            return nullcontext()
        return ledger_lock(self.lock_path, self.lock_timeout)


class InMemoryLedgerStore:
    """Ledger store held in memory. Loads return independent copies."""

    def __init__(self, ledger: Ledger | None = None):
        self._data = (ledger or Ledger()).to_dict()
        self.save_count = 0

    def load(self) -> Ledger:
        return Ledger.from_dict(json.loads(json.dumps(self._data)))

    def save(self, ledger: Ledger) -> None:
        data = ledger.to_dict()
        validate.validate(data, "ledger")
        self._data = data
        self.save_count += 1

    @contextmanager
    def locked(self):
        yield

"""
Error types for phaseflow.

Structural and validation failures inside the engine are returned as values
(see PhaseUpdateResult). These exceptions cover the load/parse boundaries:
a corrupted ledger, an unreadable history log, an uninitialized project.
"""

ERROR_CODES = {
    "NOT_INITIALIZED": "NOT_INITIALIZED",
    "CONFIG_INVALID": "CONFIG_INVALID",
    "LEDGER_CORRUPTED": "LEDGER_CORRUPTED",
    "HISTORY_CORRUPTED": "HISTORY_CORRUPTED",
    "FEATURE_NOT_FOUND": "FEATURE_NOT_FOUND",
    "VALIDATION_FAILED": "VALIDATION_FAILED",
    "LOCK_TIMEOUT": "LOCK_TIMEOUT",
}


class PhaseflowError(Exception):
    """Base error carrying a code, optional details and remedial suggestions."""

    def __init__(self, code: str, message: str, details: str | None = None,
                 suggestions: list[str] | None = None):
        self.code = code
        self.message = message
        self.details = details
        self.suggestions = list(suggestions or [])
        super().__init__(message + (f": {details}" if details else ""))


class NotInitialized(PhaseflowError):
    """No .phaseflow directory found."""

    def __init__(self, start_dir: str):
        super().__init__(
            ERROR_CODES["NOT_INITIALIZED"],
            "Project not initialized",
            f"No .phaseflow directory found from {start_dir}",
        )


class ConfigInvalid(PhaseflowError):
    """project.env could not be parsed."""

    def __init__(self, details: str):
        super().__init__(ERROR_CODES["CONFIG_INVALID"], "Invalid project config", details)


class LedgerCorrupted(PhaseflowError):
    """Ledger file exists but is not valid JSON or does not match the schema."""

    def __init__(self, details: str):
        super().__init__(
            ERROR_CODES["LEDGER_CORRUPTED"],
            "Ledger file is corrupted",
            details,
            ["Run repair to restore the ledger from backup or reset it"],
        )


class HistoryCorrupted(PhaseflowError):
    """A history log line failed to decode."""

    def __init__(self, line_num: int, details: str):
        self.line_num = line_num
        super().__init__(
            ERROR_CODES["HISTORY_CORRUPTED"],
            f"History log line {line_num} is malformed",
            details,
            ["Inspect the history log and remove or fix the malformed line"],
        )


class LockTimeout(PhaseflowError):
    """Lock acquisition timed out."""

    def __init__(self, lock_name: str, timeout: float):
        super().__init__(
            ERROR_CODES["LOCK_TIMEOUT"],
            f"Could not acquire {lock_name} within {timeout}s",
        )

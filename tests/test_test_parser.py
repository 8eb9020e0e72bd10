"""Tests for the testing.md session parser."""

from datetime import datetime, timezone

from phaseflow.lib.test_parser import (
    append_testing_session,
    format_testing_session,
    parse_testing_sessions,
    testing_passed as passed_on_disk,
    testing_passed_from_text as passed_in_text,
)

SAMPLE = """# Testing

### Session 1 - 03/14/2025, 02:30 PM
**Status:** FAIL

Login button broken.

---

### Session 2 - 03/15/2025, 09:05 AM
**Status:** PASS

All good.

---
"""


class TestParseTestingSessions:
    """Tests for parse_testing_sessions."""

    def test_parses_sessions_in_order(self):
        """Should extract each session with number, time and result."""
        attempts = parse_testing_sessions(SAMPLE)
        assert [a.attempt for a in attempts] == [1, 2]
        assert [a.result for a in attempts] == ["fail", "pass"]
        assert attempts[0].started_at == "2025-03-14T14:30:00.000Z"
        assert attempts[1].started_at == "2025-03-15T09:05:00.000Z"

    def test_no_sessions(self):
        """Should return an empty list when no session headers are present."""
        assert parse_testing_sessions("# Testing\n\nStatus: pass\n") == []

    def test_skips_unparseable_date(self):
        """Sessions with an impossible date should be skipped."""
        content = "### Session 1 - 13/45/2025, 99:99 PM\n**Status:** PASS\n"
        assert parse_testing_sessions(content) == []

    def test_to_dict_omits_unset(self):
        """to_dict should include only populated fields."""
        attempt = parse_testing_sessions(SAMPLE)[0]
        assert attempt.to_dict() == {
            "attempt": 1,
            "started_at": "2025-03-14T14:30:00.000Z",
            "result": "fail",
        }


class TestFormatTestingSession:
    """Tests for format_testing_session."""

    def test_format_is_parseable(self):
        """A formatted session should be read back by the parser."""
        when = datetime(2025, 6, 1, 16, 45, tzinfo=timezone.utc)
        block = format_testing_session(3, True, "ok", when)
        assert "### Session 3 - 06/01/2025, 04:45 PM" in block
        attempts = parse_testing_sessions(block)
        assert attempts[0].attempt == 3
        assert attempts[0].result == "pass"

    def test_default_notes(self):
        """Should fill in a placeholder when no notes are given."""
        assert "No notes provided" in format_testing_session(1, False)


class TestAppendTestingSession:
    """Tests for append_testing_session."""

    def test_creates_file_with_heading(self, tmp_path):
        """Should create testing.md with a heading and session 1."""
        path = tmp_path / "testing.md"
        number = append_testing_session(path, False, "broken")
        content = path.read_text()
        assert number == 1
        assert content.startswith("# Testing\n")
        assert "**Status:** FAIL" in content

    def test_numbers_increase(self, tmp_path):
        """Subsequent sessions should be numbered after existing ones."""
        path = tmp_path / "testing.md"
        append_testing_session(path, False)
        assert append_testing_session(path, True) == 2
        assert [a.result for a in parse_testing_sessions(path.read_text())] == ["fail", "pass"]


class TestTestingPassed:
    """Tests for testing_passed / testing_passed_from_text."""

    def test_plain_status_line(self):
        """Should accept 'Status: pass' in any case."""
        assert passed_in_text("Status: PASS")

    def test_bold_status_line(self):
        """Should accept the bold session status format."""
        assert passed_in_text(SAMPLE)

    def test_fail_only(self):
        """Should be False when only failures are recorded."""
        assert not passed_in_text("**Status:** FAIL")

    def test_missing_file(self, tmp_path):
        """Should be False when testing.md doesn't exist."""
        assert passed_on_disk(tmp_path / "testing.md") is False

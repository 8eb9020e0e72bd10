"""Tests for the review module."""

from phaseflow.lib.review import review_outcome, review_outcome_from_text


class TestReviewOutcomeFromText:
    """Tests for review_outcome_from_text."""

    def test_no_header_is_pending(self):
        """Should be pending when there is no verdict header, even with PASS elsewhere."""
        outcome = review_outcome_from_text("# Review\n\nEverything is a PASS here.\n")
        assert outcome.is_complete is False
        assert outcome.verdict == "pending"

    def test_header_without_token_is_pending(self):
        """Should be pending when the verdict section has no PASS/FAIL."""
        outcome = review_outcome_from_text("## Verdict\n\nTBD\n")
        assert outcome.verdict == "pending"

    def test_pass_after_header(self):
        """Should detect PASS after the header."""
        outcome = review_outcome_from_text("# Review\n\n## Verdict\n\n**PASS**\n")
        assert outcome.is_complete is True
        assert outcome.verdict == "pass"

    def test_fail_is_case_insensitive(self):
        """Should accept lower-case verdict tokens."""
        assert review_outcome_from_text("## Verdict\nfail\n").verdict == "fail"

    def test_tokens_before_header_ignored(self):
        """A FAIL before the header must not affect a PASS after it."""
        content = "Earlier attempt: FAIL\n\n## Verdict\n\nPASS\n"
        assert review_outcome_from_text(content).verdict == "pass"

    def test_first_token_wins(self):
        """The first token after the header decides the verdict."""
        content = "## Verdict\n\nFAIL - would PASS after fixes\n"
        assert review_outcome_from_text(content).verdict == "fail"

    def test_whole_word_only(self):
        """Substrings like PASSWORD should not count."""
        assert review_outcome_from_text("## Verdict\n\nPASSWORD reset\n").verdict == "pending"


class TestReviewOutcome:
    """Tests for review_outcome file reader."""

    def test_missing_file_is_pending(self, tmp_path):
        """Should return pending when review.md doesn't exist."""
        outcome = review_outcome(tmp_path / "review.md")
        assert outcome.is_complete is False
        assert outcome.verdict == "pending"

    def test_reads_file(self, tmp_path):
        """Should parse the verdict from disk."""
        path = tmp_path / "review.md"
        path.write_text("# Review\n\n## Verdict\n\nPASS\n")
        assert review_outcome(path).verdict == "pass"

"""Tests for "Did you mean?" suggestions."""

from phaseflow.lib.suggest import find_similar, not_found_message


class TestFindSimilar:
    """Tests for find_similar."""

    def test_typo_matches(self):
        """A close typo should return the candidate."""
        assert find_similar("20250101_dark-mdoe", ["20250101_dark-mode", "20250101_login"]) == "20250101_dark-mode"

    def test_case_insensitive(self):
        """Matching should ignore case."""
        assert find_similar("REVIEW", ["review", "testing"]) == "review"

    def test_nothing_close(self):
        """Unrelated input should give None."""
        assert find_similar("zzz", ["review", "testing"]) is None

    def test_empty_candidates(self):
        """No candidates should give None."""
        assert find_similar("review", []) is None


class TestNotFoundMessage:
    """Tests for not_found_message."""

    def test_with_suggestion(self):
        """Should append the suggestion when one is close."""
        message = not_found_message("Feature", "dark-mdoe", ["dark-mode"])
        assert message == "Feature 'dark-mdoe' not found. Did you mean 'dark-mode'?"

    def test_without_suggestion(self):
        """Should be the bare message when nothing is close."""
        assert not_found_message("Feature", "zzz", ["dark-mode"]) == "Feature 'zzz' not found"

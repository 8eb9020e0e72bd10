"""
Review artifact parsing.

Reads review.md and extracts the verdict from the section after the
"## Verdict" header.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from phaseflow.lib.constants import REVIEW_VERDICT_HEADER

logger = logging.getLogger(__name__)

VERDICT_PATTERN = re.compile(r'\b(PASS|FAIL)\b', re.IGNORECASE)


@dataclass
class ReviewOutcome:
    """Parsed review state."""
    is_complete: bool
    verdict: str  # "pending", "pass" or "fail"


PENDING = ReviewOutcome(is_complete=False, verdict="pending")


def review_outcome_from_text(content: str) -> ReviewOutcome:
    """Determine the review verdict from review.md content.

    Only text after the first "## Verdict" header counts. The first PASS or
    FAIL token found there (case-insensitive, whole word) decides the
    outcome. No header or no token means the review is still pending.
    """
    if REVIEW_VERDICT_HEADER not in content:
        return PENDING

    verdict_section = content.split(REVIEW_VERDICT_HEADER, 1)[1]
    match = VERDICT_PATTERN.search(verdict_section)
    if not match:
        return PENDING

    return ReviewOutcome(is_complete=True, verdict=match.group(1).lower())


def review_outcome(review_path: Path) -> ReviewOutcome:
    """Read review.md and return its outcome. Missing file -> pending."""
    if not review_path.exists():
        return PENDING
    try:
        content = review_path.read_text()
    except OSError as e:
        logger.warning(f"Failed to read review from {review_path}: {e}")
        return PENDING
    return review_outcome_from_text(content)

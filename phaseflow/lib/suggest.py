"""
"Did you mean?" hints for unknown feature ids and phase names.
"""

from difflib import SequenceMatcher
from typing import Iterable, Optional

SUGGEST_THRESHOLD = 0.6


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.lower(), b.lower()).ratio()


def find_similar(query: str, candidates: Iterable[str],
                 threshold: float = SUGGEST_THRESHOLD) -> Optional[str]:
    """Closest candidate to query, ignoring case; None below threshold.

    Ties go to the earliest candidate.
    """
    scored = [(_similarity(query, c), c) for c in candidates]
    if not scored:
        return None
    ratio, closest = max(scored, key=lambda pair: pair[0])
    return closest if ratio >= threshold else None


def not_found_message(kind: str, query: str, candidates: Iterable[str]) -> str:
    """"<Kind> 'x' not found", plus a hint when something is close."""
    hint = find_similar(query, candidates)
    if hint is None:
        return f"{kind} '{query}' not found"
    return f"{kind} '{query}' not found. Did you mean '{hint}'?"

"""Decides whether the best reranked candidate beats the baseline."""

import hashlib
import logging
from typing import List

from autotune.models import CandidateScore, SelectionResult

logger = logging.getLogger(__name__)

# Absorbs float noise when a delta lands exactly on a threshold
SCORE_EPSILON = 1e-9


def instructions_key(text: str) -> str:
    """Stable identity for instruction text, insensitive to whitespace differences."""
    normalized = " ".join(text.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def select_candidate(scored: List[CandidateScore], baseline: str, min_improvement: float) -> SelectionResult:
    """Pick the top candidate only if it is new and improves on the baseline enough.

    The baseline's score is its own entry in ``scored``. When the baseline text
    is not among the scored candidates the lowest score present stands in for it.
    """
    if not scored:
        return SelectionResult(selected=None, baseline_score=0.0)

    baseline_key = instructions_key(baseline)
    baseline_entry = next((c for c in scored if instructions_key(c.instructions) == baseline_key), None)
    if baseline_entry is not None:
        baseline_score = baseline_entry.score
    else:
        baseline_score = min(c.score for c in scored)
        logger.warning("Baseline not among scored candidates; using lowest score %.3f as baseline", baseline_score)

    best = max(scored, key=lambda c: c.score)
    if instructions_key(best.instructions) == baseline_key:
        return SelectionResult(selected=None, baseline_score=baseline_score)

    if best.score - baseline_score + SCORE_EPSILON < min_improvement:
        return SelectionResult(selected=None, baseline_score=baseline_score)

    return SelectionResult(selected=best, baseline_score=baseline_score)

"""Composite score aggregation.

Pure functions over board state: no I/O, no locking. The board calls
compute_composite() under its own lock and hands out the result.

Composite rules:
- Only applicable engines with a result count as completed.
- Score is the (weight-averaged) mean of completed scores, rounded half-up.
  All registry weights are currently 1.0, so this is the plain mean.
- No completed engines means no score, however many are loading.
- Weak engines are reported only once every applicable engine has a result.
"""

import math
import os
from typing import Mapping, Optional, Sequence

from video_analyzer.board.schemas import CompositeScore, EngineResult, Grade
from video_analyzer.engines.schemas import EngineDefinition

# Grade bands, evaluated top-down: first threshold the score reaches wins.
GRADE_BANDS: list[tuple[int, Grade]] = [
    (90, Grade.S),
    (80, Grade.A),
    (70, Grade.B),
    (60, Grade.C),
    (50, Grade.D),
]
FLOOR_GRADE = Grade.F

# Engines scoring below this are flagged "needs attention"
WEAK_ENGINE_THRESHOLD = int(os.environ.get("WEAK_ENGINE_THRESHOLD", "70"))

VERDICT_BANDS: list[tuple[int, str]] = [
    (90, "Exceptional - Algorithm-Ready"),
    (80, "Strong - Minor Optimizations Possible"),
    (70, "Good - Review Weak Engines"),
    (60, "Needs Work - Multiple Gaps Detected"),
]
FLOOR_VERDICT = "Critical - Rebuild Recommended"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def grade_for(
    score: int,
    bands: Sequence[tuple[int, Grade]] = GRADE_BANDS,
) -> Grade:
    """Map a 0-100 score to its letter grade."""
    for threshold, grade in bands:
        if score >= threshold:
            return grade
    return FLOOR_GRADE


def verdict_for(score: int) -> str:
    for threshold, verdict in VERDICT_BANDS:
        if score >= threshold:
            return verdict
    return FLOOR_VERDICT


def weighted_mean(scores: Sequence[tuple[int, float]]) -> Optional[float]:
    """Mean of (score, weight) pairs; None when empty."""
    total_weight = sum(weight for _, weight in scores)
    if not scores or total_weight <= 0:
        return None
    return sum(score * weight for score, weight in scores) / total_weight


def compute_composite(
    applicable: Sequence[EngineDefinition],
    results: Mapping[str, Optional[EngineResult]],
    loading: Optional[Mapping[str, bool]] = None,
    weak_threshold: int = WEAK_ENGINE_THRESHOLD,
    bands: Sequence[tuple[int, Grade]] = GRADE_BANDS,
) -> CompositeScore:
    """Build the composite score for the current board state."""
    loading = loading or {}
    applicable_keys = [e.engine_key for e in applicable]
    completed = [e for e in applicable if results.get(e.engine_key) is not None]
    any_loading = any(loading.get(key, False) for key in applicable_keys)

    mean = weighted_mean([(results[e.engine_key].score, e.weight) for e in completed])
    if mean is None:
        return CompositeScore(
            applicable=applicable_keys,
            any_loading=any_loading,
        )

    score = round_half_up(mean)
    all_complete = len(completed) == len(applicable)

    weak: list[str] = []
    verdict = None
    if all_complete:
        weak = [
            e.engine_key for e in completed
            if results[e.engine_key].score < weak_threshold
        ]
        verdict = verdict_for(score)

    return CompositeScore(
        score=score,
        grade=grade_for(score, bands),
        completed=[e.engine_key for e in completed],
        applicable=applicable_keys,
        weak_engines=weak,
        any_loading=any_loading,
        verdict=verdict,
    )

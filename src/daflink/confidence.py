"""Relevance scoring for links.

Every link carries a numeric relevance score on a 0–10 scale.  The qualitative
bucket (high / medium / low) is derived from the score, never stored
separately, so sources that only report a bucket are mapped onto the scale
and fractional snapshot confidences (0.0–1.0) are scaled by ten.

Tier thresholds:
- **High** >= 8
- **Medium** 6–8
- **Low** < 6
"""
from __future__ import annotations

from enum import StrEnum
from typing import Any


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        match self:
            case Confidence.HIGH:
                return 0
            case Confidence.MEDIUM:
                return 1
            case Confidence.LOW:
                return 2


MAX_SCORE = 10.0

BUCKET_SCORES: dict[Confidence, float] = {
    Confidence.HIGH: 8.0,
    Confidence.MEDIUM: 6.0,
    Confidence.LOW: 4.0,
}

DEFAULT_HIGH_THRESHOLD = 8.0
DEFAULT_MEDIUM_THRESHOLD = 6.0


def _bounded(value: float) -> float:
    return max(0.0, min(MAX_SCORE, float(value)))


def score_for_bucket(bucket: Confidence) -> float:
    return BUCKET_SCORES[bucket]


def bucket_for_score(
    score: float,
    *,
    high_threshold: float = DEFAULT_HIGH_THRESHOLD,
    medium_threshold: float = DEFAULT_MEDIUM_THRESHOLD,
) -> Confidence:
    """Derive the qualitative bucket from a 0–10 score."""
    value = _bounded(score)
    if value >= high_threshold:
        return Confidence.HIGH
    if value >= medium_threshold:
        return Confidence.MEDIUM
    return Confidence.LOW


def score_from_fraction(confidence: float) -> float:
    """Scale a 0–1 confidence to the 0–10 range, rounded to a whole number.

    Values already above 1 are treated as 0–10 scores and only clamped.
    """
    value = float(confidence)
    if 0.0 <= value <= 1.0:
        return float(round(value * MAX_SCORE))
    return _bounded(value)


def parse_confidence(value: Any) -> Confidence | None:
    """Parse a bucket name; ``None`` for anything unrecognised."""
    raw = str(value or "").strip().lower()
    try:
        return Confidence(raw)
    except ValueError:
        return None


def coerce_score(value: Any, *, default: float = BUCKET_SCORES[Confidence.MEDIUM]) -> float:
    """Best-effort numeric score from a stored value or bucket name."""
    bucket = parse_confidence(value)
    if bucket is not None:
        return score_for_bucket(bucket)
    try:
        return _bounded(float(value))
    except (TypeError, ValueError):
        return default

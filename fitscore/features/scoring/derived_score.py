"""
Reference score for a neighbor that was never scored by the LLM.

The score places a deal's amount against the tenant's historical range for its
classification: ideal deals land in [80, 100], non-ideal deals in [0, 50], and
the closer the amount is to the classification median the more typical (and
the more extreme) the score.
"""

import math

from fitscore.models.domain.scoring import ClassificationStats, normalize_classification

DEFAULT_SCORES = {"ideal": 90.0, "nonideal": 30.0}


def median_distance(amount: float, stats: ClassificationStats) -> float:
    """Distance from the median, normalised by the wider half of the range, in [0, 1]."""
    spread = max(stats.median - stats.low, stats.high - stats.median)
    if spread <= 0:
        return 0.0 if amount == stats.median else 1.0
    return min(1.0, abs(amount - stats.median) / spread)


def derived_score(
    amount: float | None, classification: str, stats: ClassificationStats | None
) -> float:
    label = normalize_classification(classification)
    if not amount or not math.isfinite(amount) or stats is None or stats.is_empty:
        return DEFAULT_SCORES[label]

    d = median_distance(amount, stats)
    if label == "ideal":
        return 100.0 - 20.0 * d
    return 50.0 * d

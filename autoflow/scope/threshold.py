"""Adaptive relevance cutoff computed from the shape of a ranked score list."""

from typing import Sequence

SIGNIFICANT_GAP = 0.15
THRESHOLD_FLOOR = 0.5
THRESHOLD_CEILING = 0.8
TOP_SCORE_RATIO = 0.7
MIN_MATCHES = 3
GAP_WINDOW = 10


def adaptive_threshold(
    scores: Sequence[float],
    significant_gap: float = SIGNIFICANT_GAP,
    floor: float = THRESHOLD_FLOOR,
    ceiling: float = THRESHOLD_CEILING,
) -> float:
    """Pick a similarity cutoff for one search result list.

    With more than ``MIN_MATCHES`` scores, looks for the largest drop between
    consecutive ranked scores among the top ``GAP_WINDOW``, starting at the
    third match. A drop of at least ``significant_gap`` puts the cutoff at
    the last score above the drop, so everything before the cliff is kept.
    Otherwise, and for short lists, the cutoff is 70% of the top score.

    Example: [0.95, 0.92, 0.88, 0.45, 0.40] -> 0.8 (0.88 clamped).

    Args:
        scores: Similarity scores, any order
        significant_gap: Minimum drop treated as a cliff
        floor: Lower clamp
        ceiling: Upper clamp

    Returns:
        Threshold within [floor, ceiling]; ``floor`` for an empty list
    """
    if not scores:
        return floor

    ranked = sorted(scores, reverse=True)
    top = ranked[0]

    if len(ranked) <= MIN_MATCHES:
        return _clamp(top * TOP_SCORE_RATIO, floor, ceiling)

    best_gap = 0.0
    gap_index = -1
    for i in range(MIN_MATCHES - 1, min(len(ranked) - 1, GAP_WINDOW)):
        gap = ranked[i] - ranked[i + 1]
        if gap > best_gap:
            best_gap = gap
            gap_index = i

    if gap_index >= 0 and best_gap >= significant_gap:
        return _clamp(ranked[gap_index], floor, ceiling)

    return _clamp(top * TOP_SCORE_RATIO, floor, ceiling)


def _clamp(value: float, floor: float, ceiling: float) -> float:
    return max(floor, min(ceiling, value))

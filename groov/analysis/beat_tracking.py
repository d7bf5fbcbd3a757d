"""Dynamic-programming beat tracking over the onset curve."""

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

PERIOD_TOLERANCE = 0.2
TRANSITION_LAMBDA = 100.0


def track_beats(
    onset: np.ndarray,
    period_frames: float,
    tolerance: float = PERIOD_TOLERANCE,
    transition_lambda: float = TRANSITION_LAMBDA,
) -> list[int]:
    """Select the globally best beat sequence near *period_frames*.

    Every frame either starts a new path (scoring its own onset) or extends
    the best predecessor within +/-tolerance of the period, penalized by the
    squared relative deviation from the period. The path ending at the
    highest cumulative score is backtracked through the predecessor array.

    Returns strictly increasing frame indices, or [] for fewer than 4 frames.
    """
    onset = np.asarray(onset, dtype=np.float64)
    n = len(onset)
    if n < 4:
        return []

    min_period = period_frames * (1.0 - tolerance)
    max_period = period_frames * (1.0 + tolerance)

    score = onset.copy()
    predecessor = np.full(n, -1, dtype=np.int64)

    for i in range(1, n):
        search_start = max(0, math.floor(i - max_period))
        search_end = max(0, math.floor(i - min_period))
        if search_end < search_start:
            continue

        # Latest candidate first so ties keep the closest predecessor
        candidates = np.arange(search_end, search_start - 1, -1)
        deviation = (i - candidates - period_frames) / period_frames
        totals = score[candidates] + onset[i] - transition_lambda * deviation * deviation

        best = int(np.argmax(totals))
        if totals[best] > onset[i]:
            score[i] = totals[best]
            predecessor[i] = candidates[best]

    current = int(np.argmax(score))
    beats_reversed = []
    while current >= 0:
        beats_reversed.append(current)
        current = int(predecessor[current])

    beats = beats_reversed[::-1]
    logger.debug(f"DP beat tracker: {len(beats)} beats at period {period_frames:.2f} frames")
    return beats

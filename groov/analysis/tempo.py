"""Tempo estimation from the onset curve: autocorrelation + harmonic comb."""

import logging
import math

import numpy as np

from groov.analysis.models import TempoEstimate

logger = logging.getLogger(__name__)

MIN_BPM = 60.0
MAX_BPM = 220.0

# Octave correction window: a sub-100 BPM pick is halved into this range
OCTAVE_MIN_BPM = 100.0
OCTAVE_MAX_BPM = 180.0
OCTAVE_SCORE_RATIO = 0.7


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parabolic_peak_offset(left: float, centre: float, right: float) -> float:
    """Sub-sample offset of a peak from three neighbouring values, in [-0.5, 0.5]."""
    denominator = left - 2.0 * centre + right
    if not math.isfinite(denominator) or abs(denominator) < 1e-8:
        return 0.0
    return clamp(0.5 * (left - right) / denominator, -0.5, 0.5)


def genre_bias(bpm: float) -> float:
    """Multiplicative prior favouring common dance tempos."""
    if 100.0 <= bpm <= 140.0:
        return 1.15
    if 85.0 <= bpm <= 160.0:
        return 1.05
    return 1.0


def autocorrelation(onset: np.ndarray, min_lag: int, max_lag: int) -> np.ndarray:
    """Unbiased autocorrelation for lags in [min_lag, max_lag].

    Each lag is the mean product over its valid overlap. Entries below
    *min_lag* are left at zero.
    """
    n = len(onset)
    acf = np.zeros(max_lag + 1)
    for lag in range(min_lag, max_lag + 1):
        overlap = n - lag
        if overlap > 0:
            acf[lag] = float(np.dot(onset[lag:], onset[:overlap])) / overlap
    return acf


def harmonic_comb(acf: np.ndarray, min_lag: int, max_lag: int, frame_rate: float) -> np.ndarray:
    """Score each lag by its own ACF plus its half, double and triple lags."""
    comb = np.zeros(max_lag + 1)
    for lag in range(min_lag, max_lag + 1):
        score = acf[lag]
        half_lag = round_half_up(lag / 2)
        if half_lag >= min_lag:
            score += acf[half_lag] * 0.5
        if lag * 2 <= max_lag:
            score += acf[lag * 2] * 0.5
        if lag * 3 <= max_lag:
            score += acf[lag * 3] * 0.25
        comb[lag] = score * genre_bias(60.0 * frame_rate / lag)
    return comb


def estimate_tempo(
    onset: np.ndarray,
    sample_rate: int,
    hop: int,
    min_bpm: float = MIN_BPM,
    max_bpm: float = MAX_BPM,
) -> TempoEstimate:
    """Estimate the beat period of an onset curve in (fractional) frames.

    Falls back to half a second with zero confidence when the curve is too
    short to cover two periods of the slowest tempo.
    """
    frame_rate = sample_rate / hop
    min_lag = int(math.floor(60.0 * frame_rate / max_bpm))
    max_lag = int(math.floor(60.0 * frame_rate / min_bpm))

    if max_lag <= min_lag + 1 or len(onset) < max_lag * 2:
        logger.debug(f"Tempo search degenerate ({len(onset)} frames, lags {min_lag}-{max_lag})")
        return TempoEstimate(period_frames=frame_rate / 2, confidence=0.0)

    onset = np.asarray(onset, dtype=np.float64)
    acf = autocorrelation(onset, min_lag, max_lag)
    comb = harmonic_comb(acf, min_lag, max_lag, frame_rate)

    best_lag = min_lag
    best_score = -math.inf
    second_score = -math.inf
    for lag in range(min_lag, max_lag + 1):
        score = comb[lag]
        if score > best_score:
            second_score = best_score
            best_score = score
            best_lag = lag
        elif score > second_score:
            second_score = score

    refined_lag = best_lag + parabolic_peak_offset(
        comb[max(min_lag, best_lag - 1)],
        comb[best_lag],
        comb[min(max_lag, best_lag + 1)],
    )

    # Double-time correction: a slow pick whose half lag is nearly as strong
    half_lag = round_half_up(refined_lag / 2)
    bpm_at_best = 60.0 * frame_rate / refined_lag
    bpm_at_half = 60.0 * frame_rate / half_lag if half_lag > 0 else math.inf
    if (
        half_lag >= min_lag
        and bpm_at_best < OCTAVE_MIN_BPM
        and OCTAVE_MIN_BPM <= bpm_at_half <= OCTAVE_MAX_BPM
    ):
        half_score = comb[half_lag]
        if half_score > best_score * OCTAVE_SCORE_RATIO:
            logger.debug(f"Octave correction: {bpm_at_best:.1f} -> {bpm_at_half:.1f} BPM")
            return TempoEstimate(
                period_frames=float(half_lag),
                confidence=clamp01(half_score / (best_score + 0.001) * 0.8),
            )

    contrast = (best_score - second_score) / (best_score + 0.001)
    return TempoEstimate(period_frames=float(refined_lag), confidence=clamp01(contrast * 2))

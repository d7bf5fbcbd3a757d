"""Multi-band adaptive onset strength curve."""

import logging
import math

import numpy as np
from scipy.signal import lfilter

logger = logging.getLogger(__name__)

ANALYSIS_RATE = 200  # onset frames per second (approximately)

# One-pole low-pass cutoffs splitting the signal into low / mid-low / mid / high
BAND_CUTOFFS = (200.0, 400.0, 2000.0, 8000.0)
BAND_WEIGHTS = np.array([2.5, 1.8, 1.0, 0.5])
TOTAL_ENERGY_WEIGHT = 0.1


def hop_size(sample_rate: int) -> int:
    """Samples per onset frame (~5 ms)."""
    return max(1, int(math.floor(sample_rate / ANALYSIS_RATE + 0.5)))


def adaptive_window(sample_rate: int, hop: int) -> int:
    """Rolling normalization window in frames (~125 ms, at least 8)."""
    return max(8, int((sample_rate / hop) // 8))


def _one_pole_lowpass(x: np.ndarray, cutoff: float, sr: int) -> np.ndarray:
    # y[n] = y[n-1] + alpha * (x[n] - y[n-1])
    alpha = 1.0 - math.exp(-2.0 * math.pi * cutoff / sr)
    return lfilter([alpha], [1.0, alpha - 1.0], x)


def band_energies(samples: np.ndarray, sample_rate: int, hop: int) -> tuple[np.ndarray, np.ndarray]:
    """Per-frame mean absolute band signals.

    Returns (energies, total) where energies has shape (4, frames) holding
    the low, mid-low, mid and high bands and total is the mean |x| per frame.
    """
    frame_count = len(samples) // hop
    x = np.asarray(samples[:frame_count * hop], dtype=np.float64)

    low, mid_low, mid, high = (_one_pole_lowpass(x, fc, sample_rate) for fc in BAND_CUTOFFS)
    bands = (low, mid_low - low, mid - mid_low, x - high)

    energies = np.stack([
        np.abs(band).reshape(frame_count, hop).mean(axis=1) for band in bands
    ])
    total = np.abs(x).reshape(frame_count, hop).mean(axis=1)
    return energies, total


def adaptive_normalize(values: np.ndarray, window: int) -> np.ndarray:
    """Causal rolling z-score, negative scores clipped to zero.

    Each value is scored against the mean/std of the last *window* values
    including itself, tracked in a ring buffer with running sums.
    """
    history = [0.0] * window
    running_sum = 0.0
    running_sq = 0.0
    out = np.empty(len(values))

    for i, value in enumerate(values):
        value = float(value)
        slot = i % window
        oldest = history[slot]
        running_sum -= oldest
        running_sq -= oldest * oldest

        history[slot] = value
        running_sum += value
        running_sq += value * value

        count = min(i + 1, window)
        mean = running_sum / count
        variance = max(0.0, running_sq / count - mean * mean)
        std = math.sqrt(variance) + 1e-8
        out[i] = max(0.0, (value - mean) / std)

    return out


def onset_strength_curve(
    samples: np.ndarray,
    sample_rate: int,
    hop: int | None = None,
) -> np.ndarray:
    """Compute the normalized onset strength, one value per hop.

    Onset is the weighted half-wave rectified rise of each band energy plus
    a small share of the frame's total energy. Returns an empty array when
    fewer than two frames fit in the buffer.
    """
    if hop is None:
        hop = hop_size(sample_rate)

    frame_count = len(samples) // hop
    if frame_count < 2:
        return np.zeros(0)

    energies, total = band_energies(samples, sample_rate, hop)
    rises = np.maximum(0.0, np.diff(energies, axis=1, prepend=0.0))
    raw = BAND_WEIGHTS @ rises + TOTAL_ENERGY_WEIGHT * total

    window = adaptive_window(sample_rate, hop)
    logger.debug(f"Onset curve: {frame_count} frames, hop={hop}, window={window}")
    return adaptive_normalize(raw, window)

"""Waveform summary: downsampled peak envelope plus 3-band coloring."""

import logging
from typing import Callable

import numpy as np

from groov.analysis.bands import analyze_bands_batch
from groov.analysis.models import WaveformSummary

logger = logging.getLogger(__name__)

PEAK_PROBES = 128  # max samples inspected per bucket for the peak
BAND_FRAME_SIZE = 64
CHECKPOINT_INTERVAL = 256  # buckets between cancellation/progress checkpoints
NORMALIZER_SAMPLES = 768
BAND_GAMMA = 0.72
BAND_BOOST = 1.45

# 0.5 * (1 - cos(2*pi*n / (N - 1)))
_HANN = np.hanning(BAND_FRAME_SIZE)


def percentile_normalize(
    values: np.ndarray,
    low_pct: float = 0.1,
    high_pct: float = 0.9,
) -> np.ndarray:
    """Rescale *values* to [0, 1] between two rank statistics.

    Percentiles are taken nearest-rank from a stratified subsample of at most
    768 points, so outliers beyond the 10th/90th percentile clamp to 0 or 1
    instead of squashing the rest of the range.
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return values.copy()

    stride = int(np.ceil(values.size / NORMALIZER_SAMPLES))
    ranked = np.sort(values[::stride])
    n = ranked.size
    p_low = ranked[min(n - 1, int(n * low_pct))]
    p_high = ranked[min(n - 1, int(n * high_pct))]
    span = max(1e-6, float(p_high - p_low))
    return np.clip((values - p_low) / span, 0.0, 1.0)


def shape_bands(raw: np.ndarray) -> np.ndarray:
    """Turn raw (N, 3) band fractions into display ratios.

    Each channel is percentile-normalized and gamma-compressed on its own,
    then the three are boosted and renormalized per bucket. A bucket whose
    boosted channels are all zero gets an even split.
    """
    if len(raw) == 0:
        return np.zeros((0, 3))

    channels = [percentile_normalize(raw[:, c]) ** BAND_GAMMA for c in range(3)]
    boosted = np.stack(channels, axis=1) ** BAND_BOOST
    total = boosted.sum(axis=1, keepdims=True)
    shaped = np.where(total > 1e-6, boosted / np.maximum(total, 1e-6), 1.0 / 3.0)
    return np.clip(shaped, 0.0, 1.0)


def summarize_waveform(
    samples: np.ndarray,
    sample_rate: int,
    resolution: int,
    checkpoint: Callable[[float], None] | None = None,
) -> WaveformSummary:
    """Summarize a mono buffer into *resolution* peak/band buckets.

    *checkpoint* is called with the fraction of buckets done every 256
    buckets; it may raise to abort the summary.
    """
    samples = np.asarray(samples, dtype=np.float32)
    length = len(samples)
    count = min(int(resolution), length)
    if count <= 0:
        return WaveformSummary(
            peaks=np.zeros(0, dtype=np.float32),
            bands=np.zeros(0, dtype=np.float32),
        )

    block = max(1, length // count)
    peak_offsets = np.arange(0, block, max(1, block // PEAK_PROBES))

    # Band frames stretch over the whole block for large blocks
    frame_stride = max(1, block // BAND_FRAME_SIZE)
    frame_offsets = np.arange(BAND_FRAME_SIZE) * frame_stride
    half_span = (BAND_FRAME_SIZE * frame_stride) // 2
    effective_rate = sample_rate / frame_stride

    logger.debug(f"Summarizing {length} samples into {count} buckets of {block}")

    peaks = np.empty(count, dtype=np.float32)
    raw_bands = np.empty((count, 3))

    for first in range(0, count, CHECKPOINT_INTERVAL):
        if checkpoint is not None:
            checkpoint(first / count)

        last = min(first + CHECKPOINT_INTERVAL, count)
        starts = np.arange(first, last) * block
        ends = np.minimum(starts + block, length)

        peaks[first:last] = np.abs(samples[starts[:, None] + peak_offsets]).max(axis=1)

        centres = (starts + ends) // 2
        frame_starts = np.maximum(0, centres - half_span)
        indices = np.minimum(length - 1, frame_starts[:, None] + frame_offsets)
        frames = samples[indices].astype(np.float64) * _HANN
        raw_bands[first:last] = analyze_bands_batch(frames, effective_rate)

    bands = shape_bands(raw_bands)

    return WaveformSummary(
        peaks=np.clip(peaks, 0.0, 1.0).astype(np.float32),
        bands=bands.astype(np.float32).ravel(),
    )

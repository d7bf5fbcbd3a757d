"""Beat refinement, grid regularization and final beat-grid analysis."""

import logging

import numpy as np

from groov.analysis.beat_tracking import track_beats
from groov.analysis.models import DEFAULT_BEATS_PER_BAR, EMPTY_BEAT_GRID, BeatGrid
from groov.analysis.onset import hop_size, onset_strength_curve
from groov.analysis.tempo import clamp, clamp01, estimate_tempo

logger = logging.getLogger(__name__)

MIN_DURATION_SECONDS = 2.0
MIN_ONSET_FRAMES = 100
MIN_GRID_BEATS = 4

FOLD_MIN_BPM = 75.0
FOLD_MAX_BPM = 185.0

REFINE_RADIUS = 0.8  # in hops
PERIOD_CLAMP = 0.02  # fitted period stays within 2% of the median interval
ALIGNMENT_SCALE = 3.0


def wrap(value: float, period: float) -> float:
    """Wrap *value* into [0, period). Non-positive periods leave it as is."""
    if period <= 0:
        return value
    wrapped = value % period
    return wrapped + period if wrapped < 0 else wrapped


def fold_bpm(bpm: float) -> float:
    """Double or halve *bpm* until it lies in [75, 185)."""
    while bpm < FOLD_MIN_BPM:
        bpm *= 2.0
    while bpm >= FOLD_MAX_BPM:
        bpm /= 2.0
    return bpm


def refine_beats_to_samples(
    beat_frames: list[int],
    onset: np.ndarray,
    samples: np.ndarray,
    hop: int,
) -> list[int]:
    """Snap coarse beat frames to sample positions.

    Searches +/-0.8 hop around each frame start for the sample with the best
    mix of rising slope, local-peak amplitude, onset strength of its frame
    and closeness to the coarse estimate.
    """
    magnitude = np.abs(np.asarray(samples, dtype=np.float64))
    length = len(magnitude)
    radius = int(hop * REFINE_RADIUS)
    refined: list[int] = []

    for frame in beat_frames:
        approximate = int(frame) * hop
        search_start = max(0, approximate - radius)
        search_end = min(length - 2, approximate + radius)
        if search_end <= search_start:
            refined.append(approximate)
            continue

        s = np.arange(search_start, search_end)
        current = magnitude[s]
        following = magnitude[s + 1]
        preceding = np.where(s > 0, magnitude[np.maximum(s - 1, 0)], 0.0)

        slope = following - preceding
        is_peak = (current >= preceding) & (current >= following)

        frame_index = s // hop
        if len(onset):
            onset_weight = np.where(
                frame_index < len(onset),
                onset[np.minimum(frame_index, len(onset) - 1)],
                0.0,
            )
        else:
            onset_weight = np.zeros(len(s))

        proximity = 1.0 - (np.abs(s - approximate) / radius) * 0.4

        score = (
            slope * 0.5
            + np.where(is_peak, current * 0.3, 0.0)
            + onset_weight * 0.15
            + proximity * 0.05
        )
        refined.append(int(s[int(np.argmax(score))]))

    return refined


def regularize_beat_grid(
    beat_samples: list[int],
    estimated_period: float,
) -> tuple[float, float]:
    """Fit a steady grid to refined beats.

    Returns (offset, period) in samples. The period is a least-squares slope
    of beat position against beat index, clamped to +/-2% of the median
    IQR-filtered interval; the offset is the intercept wrapped into
    [0, period).
    """
    if len(beat_samples) < MIN_GRID_BEATS:
        first = float(beat_samples[0]) if beat_samples else 0.0
        return first, float(estimated_period)

    beats = np.asarray(beat_samples, dtype=np.float64)
    intervals = np.sort(np.diff(beats))
    m = len(intervals)
    q1 = intervals[int(m * 0.25)]
    q3 = intervals[int(m * 0.75)]
    iqr = q3 - q1
    kept = intervals[(intervals >= q1 - 1.5 * iqr) & (intervals <= q3 + 1.5 * iqr)]
    median_period = float(kept[len(kept) // 2]) if len(kept) else float(estimated_period)

    n = len(beats)
    index = np.arange(n, dtype=np.float64)
    sum_x = index.sum()
    sum_y = beats.sum()
    sum_xy = float(np.dot(index, beats))
    sum_xx = float(np.dot(index, index))
    denominator = n * sum_xx - sum_x * sum_x

    period = median_period
    offset = float(beats[0])
    if abs(denominator) > 1e-8:
        slope = (n * sum_xy - sum_x * sum_y) / denominator
        intercept = (sum_y - slope * sum_x) / n
        period = clamp(slope, median_period * (1 - PERIOD_CLAMP), median_period * (1 + PERIOD_CLAMP))
        offset = intercept

    return wrap(offset, period), period


def grid_alignment(
    onset: np.ndarray,
    offset: float,
    period: float,
    hop: int,
    length: int,
) -> float:
    """Mean onset strength under a synthetic grid, mapped to [0, 1]."""
    if period <= 0 or len(onset) == 0:
        return 0.0
    positions = np.arange(offset, length, period)
    frames = np.floor(positions / hop).astype(np.int64)
    frames = frames[(frames >= 0) & (frames < len(onset))]
    if len(frames) == 0:
        return 0.0
    return clamp01(float(onset[frames].mean()) / ALIGNMENT_SCALE)


def analyze_beat_grid(samples: np.ndarray, sample_rate: int) -> BeatGrid:
    """Estimate BPM, beat phase and confidence for a mono buffer.

    Too-short or degenerate audio yields an undetermined (bpm=None) grid or
    a low-confidence grid without phase; this never raises for numeric edge
    cases.
    """
    samples = np.asarray(samples, dtype=np.float32)
    if len(samples) < sample_rate * MIN_DURATION_SECONDS:
        logger.info("Track shorter than 2s; tempo undetermined")
        return EMPTY_BEAT_GRID

    hop = hop_size(sample_rate)
    onset = onset_strength_curve(samples, sample_rate, hop)
    if len(onset) < MIN_ONSET_FRAMES:
        logger.info(f"Only {len(onset)} onset frames; tempo undetermined")
        return EMPTY_BEAT_GRID

    tempo = estimate_tempo(onset, sample_rate, hop)
    frame_rate = sample_rate / hop
    bpm = fold_bpm(60.0 * frame_rate / tempo.period_frames)
    logger.info(f"  Tempo estimate: {bpm:.2f} BPM (confidence: {tempo.confidence:.2f})")

    beat_frames = track_beats(onset, 60.0 * frame_rate / bpm)
    if len(beat_frames) < MIN_GRID_BEATS:
        logger.info(f"  Only {len(beat_frames)} beats tracked; no phase")
        return BeatGrid(
            bpm=float(bpm),
            bpm_confidence=tempo.confidence * 0.5,
            beat_offset=0.0,
            beats_per_bar=DEFAULT_BEATS_PER_BAR,
        )

    beat_samples = refine_beats_to_samples(beat_frames, onset, samples, hop)
    offset, period = regularize_beat_grid(beat_samples, sample_rate * 60.0 / bpm)

    bpm = fold_bpm(sample_rate * 60.0 / period)
    final_period = sample_rate * 60.0 / bpm
    final_offset = wrap(offset, final_period)

    alignment = grid_alignment(onset, final_offset, final_period, hop, len(samples))
    confidence = clamp01(tempo.confidence * 0.5 + alignment * 0.5)
    logger.info(
        f"  Beat grid: {bpm:.2f} BPM, offset {final_offset / sample_rate:.3f}s, "
        f"alignment {alignment:.2f}, confidence {confidence:.2f}"
    )

    return BeatGrid(
        bpm=float(bpm),
        bpm_confidence=float(confidence),
        beat_offset=float(final_offset / sample_rate),
        beats_per_bar=DEFAULT_BEATS_PER_BAR,
    )

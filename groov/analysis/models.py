"""Core data models for waveform and beat-grid analysis."""

from dataclasses import dataclass
from typing import Literal

import numpy as np

AnalysisStage = Literal["cache", "probe", "decode", "analyze"]

DEFAULT_BEATS_PER_BAR = 4


@dataclass(frozen=True, eq=False)
class WaveformSummary:
    """Downsampled peak envelope with per-bucket band-energy ratios."""
    peaks: np.ndarray  # float32[N], each in [0, 1]
    bands: np.ndarray  # float32[3N], (low, mid, high) triples summing to 1

    def __post_init__(self):
        # Results are shared through the in-memory cache
        self.peaks.setflags(write=False)
        self.bands.setflags(write=False)

    @property
    def resolution(self) -> int:
        return int(len(self.peaks))

    def band_triples(self) -> np.ndarray:
        """Bands reshaped to (N, 3)."""
        return self.bands.reshape(-1, 3)


@dataclass
class TempoEstimate:
    """Beat period found by the tempo search."""
    period_frames: float  # onset frames, may be fractional
    confidence: float  # 0.0-1.0


@dataclass(frozen=True)
class BeatGrid:
    """Periodic beat grid: tempo plus phase."""
    bpm: float | None  # None when the tempo is undetermined
    bpm_confidence: float  # 0.0-1.0
    beat_offset: float  # seconds, in [0, 60 / bpm)
    beats_per_bar: int = DEFAULT_BEATS_PER_BAR

    @property
    def beat_duration(self) -> float | None:
        if self.bpm is None or self.bpm <= 0:
            return None
        return 60.0 / self.bpm

    @property
    def bar_duration(self) -> float | None:
        beat = self.beat_duration
        if beat is None:
            return None
        return beat * max(1, round(self.beats_per_bar))


EMPTY_BEAT_GRID = BeatGrid(
    bpm=None,
    bpm_confidence=0.0,
    beat_offset=0.0,
    beats_per_bar=DEFAULT_BEATS_PER_BAR,
)


@dataclass(frozen=True, eq=False)
class AnalysisResult:
    """Complete analysis result."""
    waveform: WaveformSummary
    beat_grid: BeatGrid

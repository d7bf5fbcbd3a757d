"""Analysis orchestrator: cache → probe → decode → analyze."""

import logging
from pathlib import Path
from typing import Callable

import numpy as np

from groov.analysis.beat_grid import analyze_beat_grid
from groov.analysis.cache import analysis_key, track_id
from groov.analysis.cancellation import CanceledTokens, canceled_tokens, throw_if_canceled
from groov.analysis.models import AnalysisResult, AnalysisStage
from groov.analysis.waveform import summarize_waveform
from groov.audio.loader import load_audio
from groov.config import settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AnalysisStage, float], None]


def _clamped(on_progress: ProgressCallback | None) -> ProgressCallback:
    def report(stage: AnalysisStage, progress: float) -> None:
        if on_progress is not None:
            on_progress(stage, max(0.0, min(1.0, progress)))
    return report


def analyze(
    samples: np.ndarray,
    sample_rate: int,
    resolution: int,
    token: int = 0,
    is_canceled: Callable[[int], bool] | None = None,
    on_progress: ProgressCallback | None = None,
) -> AnalysisResult:
    """Run waveform summarization and beat-grid analysis on decoded PCM.

    Cancellation is polled every 256 waveform buckets and before the
    beat-grid stage; a canceled *token* raises AnalysisCanceled and no
    result is produced.
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if is_canceled is None:
        is_canceled = canceled_tokens.is_canceled
    report = _clamped(on_progress)

    def checkpoint(progress: float) -> None:
        throw_if_canceled(token, is_canceled)
        report("analyze", progress)

    samples = np.asarray(samples, dtype=np.float32)
    duration = len(samples) / sample_rate
    logger.info(f"Analyzing {duration:.1f}s of audio at {sample_rate}Hz (resolution {resolution})")

    logger.info("Step 1: Waveform summary")
    waveform = summarize_waveform(samples, sample_rate, resolution, checkpoint)
    throw_if_canceled(token, is_canceled)

    logger.info("Step 2: Beat grid")
    beat_grid = analyze_beat_grid(samples, sample_rate)
    report("analyze", 1.0)

    return AnalysisResult(waveform=waveform, beat_grid=beat_grid)


class AnalysisEngine:
    """Orchestrates cached, cancelable analysis of audio files."""

    def __init__(
        self,
        cache=None,
        decoder: Callable[[str], tuple[np.ndarray, int]] = load_audio,
        canceled: CanceledTokens = canceled_tokens,
    ):
        self.cache = cache  # WaveformCache | None
        self.decoder = decoder
        self.canceled = canceled

    def cancel(self, token: int) -> None:
        self.canceled.cancel(token)

    def analyze_file(
        self,
        file_path: str | Path,
        key: str | None = None,
        resolution: int | None = None,
        token: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        """Analyze an audio file, serving and filling the cache.

        DecodeError from the decoder propagates unchanged; AnalysisCanceled
        is raised at the first checkpoint after the token is canceled. Cache
        failures never abort the analysis.
        """
        if resolution is None:
            resolution = settings.resolution
        if key is None:
            key = analysis_key(track_id(file_path), resolution)
        report = _clamped(on_progress)

        report("cache", 0.0)
        if self.cache is not None:
            cached = self.cache.load(key)
            if cached is not None:
                logger.info(f"Analysis for {file_path} loaded from cache")
                report("cache", 1.0)
                return cached

        throw_if_canceled(token, self.canceled.is_canceled)
        report("probe", 0.25)
        samples, sample_rate = self.decoder(str(file_path))
        throw_if_canceled(token, self.canceled.is_canceled)
        report("decode", 1.0)

        result = analyze(
            samples,
            sample_rate,
            resolution,
            token=token,
            is_canceled=self.canceled.is_canceled,
            on_progress=report,
        )
        throw_if_canceled(token, self.canceled.is_canceled)

        if self.cache is not None:
            self.cache.save(key, result)
        return result

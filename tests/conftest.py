"""Shared test fixtures for waveform and beat-grid analysis tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from groov.analysis.cache import WaveformCache
from groov.analysis.cancellation import CanceledTokens
from groov.analysis.engine import AnalysisEngine
from groov.api.upload import get_engine
from groov.main import app

# 22000 Hz gives a 110-sample hop, so 0.5s and 0.375s beat spacings land on
# whole onset frames (100 and 75).
CLICK_SR = 22000


def generate_click_track(
    bpm: float,
    duration_seconds: float = 10.0,
    sr: int = CLICK_SR,
    accent_every: int | None = None,
    accent_ratio: float = 2.0,
    click_freq: float = 80.0,
) -> np.ndarray:
    """Generate a synthetic kick-like click track.

    Each click is a 30ms decaying low sine burst (energy below 220 Hz).
    With *accent_every*, every n-th click is *accent_ratio* times louder.
    Returns mono float32 audio peak-normalized to 1.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    click_samples = int(0.03 * sr)
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * click_freq * t_click) * np.exp(-t_click * 80)

    beat_interval = 60.0 / bpm
    beat = 0
    while beat * beat_interval < duration_seconds:
        sample_pos = int(round(beat * beat_interval * sr))
        amplitude = 1.0
        if accent_every and beat % accent_every == 0:
            amplitude = accent_ratio

        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude
        beat += 1

    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak

    return audio.astype(np.float32)


@pytest.fixture
def click_120():
    """Click track at 120 BPM."""
    return generate_click_track(bpm=120, duration_seconds=10)


@pytest.fixture
def waveform_cache(tmp_path):
    cache = WaveformCache(tmp_path / "cache")
    yield cache
    cache.close()


@pytest.fixture
def engine(waveform_cache):
    """Engine with an isolated cache and canceled-token set."""
    return AnalysisEngine(cache=waveform_cache, canceled=CanceledTokens())


@pytest.fixture
def client(engine):
    """FastAPI test client wired to the isolated engine."""
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_engine, None)

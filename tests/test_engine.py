"""Tests for the analysis orchestrator, cancellation and progress reporting."""

import lmdb
import numpy as np
import pytest
import soundfile as sf

from groov.analysis.cache import analysis_key, track_id
from groov.analysis.cancellation import AnalysisCanceled, CanceledTokens, throw_if_canceled
from groov.analysis.engine import AnalysisEngine, analyze
from groov.audio.loader import DecodeError, load_audio
from tests.conftest import CLICK_SR


class FakeDecoder:
    """Decoder stand-in returning fixed PCM and counting calls."""

    def __init__(self, samples, sample_rate=CLICK_SR, before_return=None):
        self.samples = samples
        self.sample_rate = sample_rate
        self.before_return = before_return
        self.calls = 0

    def __call__(self, path):
        self.calls += 1
        if self.before_return is not None:
            self.before_return()
        return self.samples, self.sample_rate


def test_canceled_tokens():
    tokens = CanceledTokens()
    tokens.cancel(3)
    assert tokens.is_canceled(3)
    assert 3 in tokens
    assert not tokens.is_canceled(4)

    tokens.discard(3)
    assert 3 not in tokens
    assert len(tokens) == 0


def test_throw_if_canceled():
    tokens = CanceledTokens()
    throw_if_canceled(1, tokens.is_canceled)

    tokens.cancel(1)
    with pytest.raises(AnalysisCanceled) as excinfo:
        throw_if_canceled(1, tokens.is_canceled)
    assert excinfo.value.token == 1


def test_analyze_result_structure(click_120):
    result = analyze(click_120, CLICK_SR, 512, is_canceled=CanceledTokens().is_canceled)

    assert result.waveform.resolution == 512
    assert len(result.waveform.bands) == 512 * 3
    assert result.beat_grid.bpm == pytest.approx(120.0, abs=0.5)


def test_analyze_is_deterministic(click_120):
    tokens = CanceledTokens()
    first = analyze(click_120, CLICK_SR, 1000, is_canceled=tokens.is_canceled)
    second = analyze(click_120, CLICK_SR, 1000, is_canceled=tokens.is_canceled)

    np.testing.assert_array_equal(first.waveform.peaks, second.waveform.peaks)
    np.testing.assert_array_equal(first.waveform.bands, second.waveform.bands)
    assert first.beat_grid == second.beat_grid


def test_progress_is_monotonic_and_bounded(click_120):
    events = []
    analyze(
        click_120, CLICK_SR, 2048,
        is_canceled=CanceledTokens().is_canceled,
        on_progress=lambda stage, p: events.append((stage, p)),
    )

    assert {stage for stage, _ in events} == {"analyze"}
    values = [p for _, p in events]
    assert values == sorted(values)
    assert values[0] == 0.0
    assert values[-1] == 1.0


def test_pre_canceled_token_produces_nothing(click_120):
    tokens = CanceledTokens()
    tokens.cancel(7)
    events = []

    with pytest.raises(AnalysisCanceled):
        analyze(
            click_120, CLICK_SR, 512, token=7,
            is_canceled=tokens.is_canceled,
            on_progress=lambda stage, p: events.append((stage, p)),
        )
    assert events == []


def test_cancel_between_checkpoints(click_120):
    tokens = CanceledTokens()
    events = []

    def on_progress(stage, progress):
        events.append(progress)
        if progress > 0:
            tokens.cancel(9)

    with pytest.raises(AnalysisCanceled):
        analyze(
            click_120, CLICK_SR, 4096, token=9,
            is_canceled=tokens.is_canceled,
            on_progress=on_progress,
        )
    # Stopped at the checkpoint right after the cancel
    assert events == [0.0, 256 / 4096]


def test_other_tokens_are_not_affected(click_120):
    tokens = CanceledTokens()
    tokens.cancel(1)
    result = analyze(click_120, CLICK_SR, 64, token=2, is_canceled=tokens.is_canceled)
    assert result.waveform.resolution == 64


def test_rejects_invalid_sample_rate(click_120):
    with pytest.raises(ValueError):
        analyze(click_120, 0, 64)


def _engine(cache, decoder):
    return AnalysisEngine(cache=cache, decoder=decoder, canceled=CanceledTokens())


def test_analyze_file_stage_order(waveform_cache, click_120):
    """Progress runs cache, probe, decode, then analyze up to 1.0."""
    engine = _engine(waveform_cache, FakeDecoder(click_120))
    events = []

    engine.analyze_file("song.wav", key="k", resolution=512,
                        on_progress=lambda stage, p: events.append((stage, p)))

    assert events[:3] == [("cache", 0.0), ("probe", 0.25), ("decode", 1.0)]
    assert all(stage == "analyze" for stage, _ in events[3:])
    assert events[-1] == ("analyze", 1.0)


def test_cache_hit_skips_decoding(waveform_cache, click_120):
    """A second request for the same key is served without decoding."""
    decoder = FakeDecoder(click_120)
    engine = _engine(waveform_cache, decoder)

    first = engine.analyze_file("song.wav", key="k", resolution=256)
    events = []
    second = engine.analyze_file("song.wav", key="k", resolution=256,
                                 on_progress=lambda stage, p: events.append((stage, p)))

    assert decoder.calls == 1
    assert events == [("cache", 0.0), ("cache", 1.0)]
    np.testing.assert_array_equal(first.waveform.peaks, second.waveform.peaks)
    assert second.beat_grid.bpm == pytest.approx(first.beat_grid.bpm)


def test_default_key_uses_track_identity(waveform_cache, click_120, tmp_path):
    path = tmp_path / "song.wav"
    path.write_bytes(b"placeholder")
    engine = _engine(waveform_cache, FakeDecoder(click_120))

    engine.analyze_file(path, resolution=128)

    assert waveform_cache.load(analysis_key(track_id(path), 128)) is not None


def test_decode_error_propagates_and_caches_nothing(waveform_cache):
    def broken(path):
        raise DecodeError("not audio")

    engine = _engine(waveform_cache, broken)
    with pytest.raises(DecodeError):
        engine.analyze_file("broken.wav", key="k", resolution=256)
    assert waveform_cache.load("k") is None


def test_cancel_during_decode_skips_cache_write(waveform_cache, click_120):
    """A run canceled mid-way must not leave a cache entry behind."""
    engine = _engine(waveform_cache, None)
    engine.decoder = FakeDecoder(click_120, before_return=lambda: engine.cancel(5))

    with pytest.raises(AnalysisCanceled):
        engine.analyze_file("song.wav", key="k", resolution=256, token=5)
    assert waveform_cache.load("k") is None


def test_cache_write_failure_still_returns_result(waveform_cache, click_120, monkeypatch):
    def fail(key, data):
        raise lmdb.MapFullError("full")

    monkeypatch.setattr(waveform_cache, "put", fail)
    engine = _engine(waveform_cache, FakeDecoder(click_120))

    result = engine.analyze_file("song.wav", key="k", resolution=256)
    assert result.waveform.resolution == 256


def test_engine_without_cache(click_120):
    engine = _engine(None, FakeDecoder(click_120))
    assert engine.analyze_file("song.wav", resolution=64).waveform.resolution == 64


def test_real_wav_file(engine, click_120, tmp_path):
    """End to end through librosa decoding of a WAV file."""
    path = tmp_path / "click.wav"
    sf.write(str(path), click_120, CLICK_SR)

    result = engine.analyze_file(path, resolution=256)

    assert result.waveform.resolution == 256
    assert result.beat_grid.bpm == pytest.approx(120.0, abs=1.0)


def test_load_audio_wav(click_120, tmp_path):
    path = tmp_path / "click.wav"
    sf.write(str(path), np.stack([click_120, click_120], axis=1), CLICK_SR)

    samples, sample_rate = load_audio(path)

    assert sample_rate == CLICK_SR
    assert samples.dtype == np.float32
    assert samples.ndim == 1
    assert len(samples) == len(click_120)


def test_load_audio_missing_file(tmp_path):
    with pytest.raises(DecodeError):
        load_audio(tmp_path / "missing.wav")

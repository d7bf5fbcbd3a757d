"""Tests for the dynamic-programming beat tracker."""

import numpy as np

from groov.analysis.beat_tracking import track_beats


def test_follows_regular_pulses():
    onset = np.zeros(1000)
    onset[50::100] = 1.0
    assert track_beats(onset, 100.0) == list(range(50, 1000, 100))


def test_tolerates_slight_tempo_drift():
    onset = np.zeros(1200)
    positions = [20, 122, 226, 331, 437, 544, 652, 761, 871, 982, 1094]
    onset[positions] = 1.0
    assert track_beats(onset, 105.0) == positions


def test_skips_weak_offbeats():
    onset = np.zeros(1000)
    onset[50::100] = 1.0
    onset[100::100] = 0.3
    assert track_beats(onset, 100.0) == list(range(50, 1000, 100))


def test_too_short_curve():
    assert track_beats(np.ones(3), 2.0) == []


def test_beats_strictly_increase_on_noise():
    onset = np.random.default_rng(3).random(2000)
    beats = track_beats(onset, 90.0)
    assert len(beats) > 1
    assert all(b > a for a, b in zip(beats, beats[1:]))

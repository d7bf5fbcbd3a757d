"""Coarse low/mid/high spectral energy split for short frames."""

import numpy as np

LOW_MAX_HZ = 220.0
MID_MAX_HZ = 2400.0
HIGH_MAX_HZ = 9000.0  # inclusive upper analysis bound


def analyze_bands_batch(frames: np.ndarray, sample_rates) -> np.ndarray:
    """Band energy fractions for a stack of frames.

    Each row of *frames* is one frame; *sample_rates* is a scalar or one
    effective rate per row. Magnitudes of DFT bins 1..N/2 (DC excluded) are
    summed into low (<= 220 Hz), mid (<= 2400 Hz) and high (<= 9000 Hz)
    buckets and divided by their total.

    Returns an array of shape (rows, 3). Rows with no energy are all zero.
    """
    frames = np.atleast_2d(np.asarray(frames, dtype=np.float64))
    rows, n = frames.shape
    if rows == 0 or n < 2:
        return np.zeros((rows, 3))

    rates = np.broadcast_to(np.asarray(sample_rates, dtype=np.float64), (rows,))

    # rfft bins 1..n//2 match the direct summation over k = 1..N/2
    spectrum = np.abs(np.fft.rfft(frames, axis=1))[:, 1:n // 2 + 1]
    bins = np.arange(1, n // 2 + 1, dtype=np.float64)
    freqs = rates[:, None] * bins[None, :] / n

    low = np.where(freqs <= LOW_MAX_HZ, spectrum, 0.0).sum(axis=1)
    mid = np.where((freqs > LOW_MAX_HZ) & (freqs <= MID_MAX_HZ), spectrum, 0.0).sum(axis=1)
    high = np.where((freqs > MID_MAX_HZ) & (freqs <= HIGH_MAX_HZ), spectrum, 0.0).sum(axis=1)

    energies = np.stack([low, mid, high], axis=1)
    total = energies.sum(axis=1, keepdims=True)
    return energies / np.where(total > 0, total, 1.0)


def analyze_bands(frame: np.ndarray, sample_rate: float) -> tuple[float, float, float]:
    """Return (low, mid, high) energy fractions of a single frame."""
    low, mid, high = analyze_bands_batch(np.asarray(frame)[None, :], sample_rate)[0]
    return float(low), float(mid), float(high)

"""Audio file decoding to mono PCM."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import librosa
import numpy as np

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """The audio file could not be decoded."""


def load_audio(file_path: Union[str, Path]) -> tuple[np.ndarray, int]:
    """Decode an audio file to mono float32 at its native sample rate.

    Parameters
    ----------
    file_path:
        Path to an audio file.

    Returns
    -------
    tuple[np.ndarray, int]
        A tuple of (samples, sample_rate).
    """
    try:
        audio, sample_rate = librosa.load(str(file_path), sr=None, mono=True)
    except Exception as e:
        raise DecodeError(f"Could not decode {file_path}: {e}") from e
    logger.info(f"Decoded {file_path}: {len(audio) / sample_rate:.1f}s at {sample_rate}Hz")
    return np.asarray(audio, dtype=np.float32), int(sample_rate)

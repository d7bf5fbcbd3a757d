"""Waveform/beat-grid analysis cache backed by LMDB.

Entry layout (little endian, 24-byte header):

    offset  field            type
    0       peaks_len        u32
    4       bands_len        u32
    8       bpm              f32   NaN when the tempo is undetermined
    12      bpm_confidence   f32
    16      beat_offset      f32   seconds
    20      beats_per_bar    u32
    24      peaks            f32 * peaks_len
    ...     bands            f32 * bands_len

An entry whose length differs from 24 + 4 * (peaks_len + bands_len) is a
cache miss, never an error.

Key format:
    sha256("{cache_version}:{analysis_key}")  → entry bytes

where analysis_key is "{track_id}:{resolution}" and track_id is derived
from path, size and mtime. Bumping cache_version invalidates every entry.
"""

import hashlib
import logging
import math
from collections import OrderedDict
from pathlib import Path

import lmdb
import numpy as np

from groov.analysis.models import AnalysisResult, BeatGrid, WaveformSummary
from groov.config import settings

logger = logging.getLogger(__name__)

HEADER_DTYPE = np.dtype([
    ("peaks_len", "<u4"),
    ("bands_len", "<u4"),
    ("bpm", "<f4"),
    ("bpm_confidence", "<f4"),
    ("beat_offset", "<f4"),
    ("beats_per_bar", "<u4"),
])
HEADER_SIZE = HEADER_DTYPE.itemsize  # 24


# ----------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------

def track_id(file_path: str | Path) -> str:
    """Stable track identity from path hash, file size and mtime (ms)."""
    p = Path(file_path)
    path_hash = hashlib.sha256(str(p).encode("utf-8", errors="ignore")).hexdigest()[:20]
    try:
        stat = p.stat()
        size, mtime_ms = stat.st_size, math.floor(stat.st_mtime * 1000)
    except OSError:
        size, mtime_ms = 0, 0
    return f"{path_hash}:{size}:{mtime_ms}"


def analysis_key(track: str, resolution: int) -> str:
    return f"{track}:{resolution}"


# ----------------------------------------------------------------------
# Binary codec
# ----------------------------------------------------------------------

def encode_analysis(result: AnalysisResult) -> bytes:
    """Serialize an analysis result to the binary cache layout."""
    peaks = np.asarray(result.waveform.peaks, dtype="<f4")
    bands = np.asarray(result.waveform.bands, dtype="<f4")
    grid = result.beat_grid

    header = np.zeros(1, dtype=HEADER_DTYPE)
    header["peaks_len"] = len(peaks)
    header["bands_len"] = len(bands)
    header["bpm"] = np.nan if grid.bpm is None else grid.bpm
    header["bpm_confidence"] = grid.bpm_confidence
    header["beat_offset"] = grid.beat_offset
    header["beats_per_bar"] = grid.beats_per_bar

    return header.tobytes() + peaks.tobytes() + bands.tobytes()


def decode_analysis(data: bytes | None) -> AnalysisResult | None:
    """Parse a cache entry. Returns None if it is missing or malformed."""
    if data is None or len(data) < HEADER_SIZE:
        return None

    header = np.frombuffer(data, dtype=HEADER_DTYPE, count=1)[0]
    peaks_len = int(header["peaks_len"])
    bands_len = int(header["bands_len"])
    if len(data) != HEADER_SIZE + 4 * (peaks_len + bands_len):
        return None

    if peaks_len + bands_len == 0:
        values = np.zeros(0, dtype=np.float32)
    else:
        values = np.frombuffer(data, dtype="<f4", offset=HEADER_SIZE).astype(np.float32)
    bpm = float(header["bpm"])
    confidence = float(header["bpm_confidence"])
    offset = float(header["beat_offset"])

    return AnalysisResult(
        waveform=WaveformSummary(peaks=values[:peaks_len], bands=values[peaks_len:]),
        beat_grid=BeatGrid(
            bpm=bpm if math.isfinite(bpm) else None,
            bpm_confidence=confidence if math.isfinite(confidence) else 0.0,
            beat_offset=offset if math.isfinite(offset) else 0.0,
            beats_per_bar=max(1, int(header["beats_per_bar"]) or 4),
        ),
    )


# ----------------------------------------------------------------------
# In-memory LRU
# ----------------------------------------------------------------------

class LRUCache:
    """Bounded mapping that evicts the least recently used entry.

    Hits move the entry to the most-recent end; inserts beyond *limit* drop
    entries from the oldest end.
    """

    def __init__(self, limit: int):
        self.limit = max(0, limit)
        self._entries: OrderedDict = OrderedDict()

    def get(self, key):
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key, value) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.limit:
            self._entries.popitem(last=False)

    def discard(self, key) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list:
        """Keys from least to most recently used."""
        return list(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ----------------------------------------------------------------------
# Persistent cache
# ----------------------------------------------------------------------

class WaveformCache:
    """Best-effort analysis cache: LMDB on disk, LRU in memory."""

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        version: int | None = None,
        map_size: int | None = None,
        memory_limit: int | None = None,
    ):
        self.cache_dir = Path(cache_dir if cache_dir is not None else settings.cache_dir)
        self.version = settings.cache_version if version is None else version

        lmdb_path = self.cache_dir / "waveforms.lmdb"
        lmdb_path.mkdir(parents=True, exist_ok=True)
        self._env = lmdb.open(
            str(lmdb_path),
            map_size=map_size or settings.cache_map_size,
            max_dbs=0,
            readahead=False,
        )
        self._memory = LRUCache(
            settings.payload_cache_limit if memory_limit is None else memory_limit
        )

    def _key(self, key: str) -> bytes:
        return hashlib.sha256(f"{self.version}:{key}".encode()).hexdigest().encode()

    # ------------------------------------------------------------------
    # Raw bytes
    # ------------------------------------------------------------------

    def get(self, key: str) -> bytes | None:
        with self._env.begin() as txn:
            data = txn.get(self._key(key))
        return bytes(data) if data is not None else None

    def put(self, key: str, data: bytes) -> None:
        with self._env.begin(write=True) as txn:
            txn.put(self._key(key), data)

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    def load(self, key: str) -> AnalysisResult | None:
        """Return the cached result for *key*, or None on any miss."""
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        try:
            data = self.get(key)
        except lmdb.Error as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if data is None:
            return None

        result = decode_analysis(data)
        if result is None:
            logger.warning(f"Ignoring malformed cache entry for {key} ({len(data)} bytes)")
            return None

        self._memory.put(key, result)
        return result

    def save(self, key: str, result: AnalysisResult) -> bool:
        """Store *result*. Failures are logged, never raised."""
        self._memory.put(key, result)
        try:
            self.put(key, encode_analysis(result))
        except (lmdb.Error, OSError) as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the LMDB environment."""
        if self._env:
            self._env.close()
            self._env = None

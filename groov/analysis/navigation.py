"""Beat and bar navigation on an analyzed beat grid."""

import math
from dataclasses import dataclass

from groov.analysis.models import BeatGrid


@dataclass
class BeatMarker:
    """A grid beat inside a time window."""
    index: int  # beats since the grid offset, negative before it
    time: float  # seconds
    bar: int  # 1-based bar number
    beat_in_bar: int  # 1-based

    @property
    def is_downbeat(self) -> bool:
        return self.beat_in_bar == 1

    @property
    def label(self) -> str:
        return f"{self.bar}.{self.beat_in_bar}"


def beat_jump_seconds(grid: BeatGrid) -> float | None:
    """Length of one beat jump, or None when the tempo is undetermined."""
    return grid.beat_duration


def bar_jump_seconds(grid: BeatGrid) -> float | None:
    """Length of one bar jump, or None when the tempo is undetermined."""
    return grid.bar_duration


def skip(
    grid: BeatGrid,
    position: float,
    beats: int,
    duration: float | None = None,
) -> float | None:
    """Move *position* by a whole number of beats, clamped to the track."""
    beat = grid.beat_duration
    if beat is None:
        return None
    target = max(0.0, position + beats * beat)
    if duration is not None:
        target = min(duration, target)
    return target


def snap_to_beat(grid: BeatGrid, position: float) -> float:
    """Nearest grid beat to *position* (unchanged without a tempo)."""
    beat = grid.beat_duration
    if beat is None:
        return position
    index = round((position - grid.beat_offset) / beat)
    return grid.beat_offset + index * beat


def beat_markers(
    grid: BeatGrid,
    start: float,
    end: float,
    stride: int = 1,
) -> list[BeatMarker]:
    """Grid beats within [start, end], every *stride* beats.

    Strides are aligned to beat index 0, so bar lines stay on downbeats
    when *stride* divides the bar.
    """
    beat = grid.beat_duration
    if beat is None or end < start:
        return []

    stride = max(1, int(stride))
    beats_per_bar = max(1, round(grid.beats_per_bar))
    first = math.floor((start - grid.beat_offset) / beat)
    last = math.ceil((end - grid.beat_offset) / beat)
    first = (first // stride) * stride

    markers = []
    for index in range(first, last + 1, stride):
        time = grid.beat_offset + index * beat
        if time < start or time > end:
            continue
        markers.append(BeatMarker(
            index=index,
            time=time,
            bar=index // beats_per_bar + 1,
            beat_in_bar=index % beats_per_bar + 1,
        ))
    return markers

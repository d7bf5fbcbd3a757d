"""Pydantic response models for API."""

from pydantic import BaseModel

from groov.analysis.models import AnalysisResult
from groov.analysis.navigation import bar_jump_seconds, beat_jump_seconds


class WaveformResponse(BaseModel):
    peaks: list[float]
    bands: list[float]


class BeatGridResponse(BaseModel):
    bpm: float | None = None
    bpm_confidence: float = 0.0
    beat_offset: float = 0.0
    beats_per_bar: int = 4
    beat_jump_seconds: float | None = None
    bar_jump_seconds: float | None = None


class AnalysisResponse(BaseModel):
    waveform: WaveformResponse
    beat_grid: BeatGridResponse
    token: int | None = None


class CancelResponse(BaseModel):
    ok: bool = True


# WebSocket message types

class AnalyzeRequest(BaseModel):
    type: str = "analyze"
    path: str
    analysis_key: str | None = None
    resolution: int | None = None
    token: int = 0


class ProgressMessage(BaseModel):
    type: str = "progress"
    token: int
    stage: str
    progress: float


class AnalysisMessage(BaseModel):
    type: str = "analysis"
    token: int
    data: AnalysisResponse


class CanceledMessage(BaseModel):
    type: str = "canceled"
    token: int


class ErrorMessage(BaseModel):
    type: str = "error"
    token: int | None = None
    message: str


def result_to_response(result: AnalysisResult, token: int | None = None) -> AnalysisResponse:
    """Convert an AnalysisResult to its API representation."""
    grid = result.beat_grid
    return AnalysisResponse(
        waveform=WaveformResponse(
            peaks=result.waveform.peaks.tolist(),
            bands=result.waveform.bands.tolist(),
        ),
        beat_grid=BeatGridResponse(
            bpm=grid.bpm,
            bpm_confidence=grid.bpm_confidence,
            beat_offset=grid.beat_offset,
            beats_per_bar=grid.beats_per_bar,
            beat_jump_seconds=beat_jump_seconds(grid),
            bar_jump_seconds=bar_jump_seconds(grid),
        ),
        token=token,
    )

"""File upload endpoint for waveform and beat-grid analysis."""

import asyncio
import functools
import hashlib
import logging
import os
import secrets
import tempfile

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from groov.analysis.cache import WaveformCache, analysis_key
from groov.analysis.cancellation import AnalysisCanceled
from groov.analysis.engine import AnalysisEngine
from groov.api.schemas import AnalysisResponse, CancelResponse, result_to_response
from groov.audio.loader import DecodeError
from groov.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {
    ".aac", ".aif", ".aiff", ".flac", ".m4a", ".mp3", ".ogg", ".opus", ".wav", ".webm",
}

_engine: AnalysisEngine | None = None


def get_engine() -> AnalysisEngine:
    """Shared engine with the persistent cache (created on first use)."""
    global _engine
    if _engine is None:
        _engine = AnalysisEngine(cache=WaveformCache())
    return _engine


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_file(
    file: UploadFile = File(...),
    resolution: int | None = None,
    token: int | None = None,
    engine: AnalysisEngine = Depends(get_engine),
):
    """Analyze an uploaded audio file into a waveform summary and beat grid.

    Without a client *token* the upload gets a fresh one, returned in the
    response, so it can be canceled without touching other uploads.
    """
    suffix = ""
    if file.filename and "." in file.filename:
        suffix = "." + file.filename.rsplit(".", 1)[-1].lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    content = await file.read()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    if resolution is None:
        resolution = settings.resolution
    if resolution <= 0:
        raise HTTPException(400, "Resolution must be positive")

    # Uploads land on random temp paths, so key the cache on content instead
    key = analysis_key(hashlib.sha256(content).hexdigest()[:20], resolution)
    if token is None:
        token = secrets.randbits(53)
    else:
        engine.canceled.discard(token)

    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            tmp.write(content)
            tmp_path = tmp.name

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            functools.partial(engine.analyze_file, tmp_path, key=key, resolution=resolution, token=token),
        )
        return result_to_response(result, token=token)
    except AnalysisCanceled:
        raise HTTPException(409, "Analysis canceled")
    except DecodeError as e:
        logger.warning(f"Decode failed for upload {file.filename}: {e}")
        raise HTTPException(422, "Could not decode audio")
    except Exception:
        logger.exception("Analysis failed")
        raise HTTPException(500, "Analysis failed")
    finally:
        if tmp_path:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass


@router.post("/cancel/{token}", response_model=CancelResponse)
async def cancel_analysis(token: int, engine: AnalysisEngine = Depends(get_engine)):
    """Mark an in-flight analysis as canceled."""
    engine.cancel(token)
    return CancelResponse()

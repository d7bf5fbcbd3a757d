"""WebSocket endpoint for analysis with progress and cancellation."""

import asyncio
import functools
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from groov.analysis.cancellation import AnalysisCanceled
from groov.analysis.engine import AnalysisEngine
from groov.api.schemas import (
    AnalysisMessage,
    AnalyzeRequest,
    CanceledMessage,
    ErrorMessage,
    ProgressMessage,
    result_to_response,
)
from groov.api.upload import get_engine
from groov.audio.loader import DecodeError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/analyze")
async def analyze_socket(websocket: WebSocket, engine: AnalysisEngine = Depends(get_engine)):
    """Analyze local files with streamed progress.

    Protocol:
    - Client sends JSON requests:
      - {"type": "analyze", "path": P, "token": T, "resolution"?: N, "analysis_key"?: K}
      - {"type": "cancel", "token": T}
    - Server sends JSON messages:
      - {"type": "progress", "token": T, "stage": S, "progress": 0..1}
      - {"type": "analysis", "token": T, "data": {...}}
      - {"type": "canceled", "token": T}
      - {"type": "error", "token": T, "message": M}
    """
    await websocket.accept()

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()
    active: dict[int, asyncio.Task] = {}

    async def run(request: AnalyzeRequest) -> None:
        token = request.token

        def on_progress(stage: str, progress: float) -> None:
            message = ProgressMessage(token=token, stage=stage, progress=progress).model_dump()
            loop.call_soon_threadsafe(outbox.put_nowait, message)

        try:
            result = await loop.run_in_executor(
                None,
                functools.partial(
                    engine.analyze_file,
                    request.path,
                    key=request.analysis_key,
                    resolution=request.resolution,
                    token=token,
                    on_progress=on_progress,
                ),
            )
        except AnalysisCanceled:
            message = CanceledMessage(token=token).model_dump()
        except DecodeError as e:
            message = ErrorMessage(token=token, message=str(e)).model_dump()
        except Exception:
            logger.exception(f"Analysis {token} failed")
            message = ErrorMessage(token=token, message="Analysis failed").model_dump()
        else:
            message = AnalysisMessage(token=token, data=result_to_response(result, token=token)).model_dump()
        finally:
            active.pop(token, None)
        await outbox.put(message)

    async def sender() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    sender_task = asyncio.create_task(sender())
    try:
        while True:
            payload = await websocket.receive_json()
            if payload.get("type") == "cancel":
                engine.cancel(int(payload.get("token", 0)))
                continue

            try:
                request = AnalyzeRequest.model_validate(payload)
            except ValidationError:
                await outbox.put(ErrorMessage(message="Invalid request").model_dump())
                continue

            engine.canceled.discard(request.token)
            active[request.token] = asyncio.create_task(run(request))

    except WebSocketDisconnect:
        # Nobody is listening any more; stop in-flight work at its next checkpoint
        for token in list(active):
            engine.cancel(token)
    finally:
        sender_task.cancel()

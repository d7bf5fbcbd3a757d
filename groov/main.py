"""FastAPI application - serves the analysis API."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from groov.api.upload import router as upload_router
from groov.api.websocket import router as ws_router
from groov.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Groov", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upload_router, prefix="/api")
app.include_router(ws_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    uvicorn.run(
        "groov.main:app",
        host=settings.host,
        port=settings.port,
    )

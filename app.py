"""
Relay endpoint: browser microphone -> realtime ASR -> browser.

The client opens ``/ws/listen?language=en`` and sends binary messages of
little-endian float32 mono samples at 16 kHz. Results come back as JSON
text messages::

    {"type": "result", "text": "...", "final": false}
    {"type": "status", "phase": "STREAMING"}
    {"type": "error", "message": "..."}

Run with::

    uvicorn app:app --port 8000
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from logging import getLogger
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, WebSocket

from config import DASHSCOPE_API_KEY
from realtime_asr.capture_client import ClientWebSocketCapture
from realtime_asr.errors import AsrError
from realtime_asr.session import QwenAsrConfig, RecognitionSession, SessionPhase
from realtime_asr.transport import Opener
from realtime_asr.utils import setup_logging


logger = getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    yield


app = FastAPI(title="Realtime ASR relay", lifespan=lifespan)


def get_asr_config() -> QwenAsrConfig:
    return QwenAsrConfig(api_key=DASHSCOPE_API_KEY)


def get_opener() -> Optional[Opener]:
    """Transport override, None means a real websocket."""
    return None


@app.websocket("/ws/listen")
async def listen(
        ws: WebSocket,
        language: Optional[str] = None,
        cfg: QwenAsrConfig = Depends(get_asr_config),
        opener: Optional[Opener] = Depends(get_opener),
) -> None:
    await ws.accept()
    outbox: asyncio.Queue[Optional[dict]] = asyncio.Queue(maxsize=200)

    def _push(message: Optional[dict]) -> None:
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("[WS] Client is not reading, dropping message %r.", message)

    capture = ClientWebSocketCapture(ws)
    session = RecognitionSession(cfg, capture=capture, opener=opener)
    session.on_result(lambda text, final: _push({"type": "result", "text": text, "final": final}))
    session.on_error(lambda e: _push({"type": "error", "message": str(e)}))
    ended = asyncio.Event()

    def _on_status(phase: SessionPhase) -> None:
        _push({"type": "status", "phase": phase.value})
        if phase is SessionPhase.IDLE:
            ended.set()

    session.on_status(_on_status)
    if language:
        await session.set_language(language)

    async def _sender() -> None:
        while True:
            message = await outbox.get()
            if message is None:
                break
            await ws.send_json(message)

    sender = asyncio.create_task(_sender())
    try:
        await session.start()
        waiters = {asyncio.create_task(capture.disconnected.wait()), asyncio.create_task(ended.wait())}
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for t in pending:
            t.cancel()
    except AsrError as e:
        logger.error("[WS] Could not start recognition: %s", e)
        _push({"type": "error", "message": str(e)})
    finally:
        await session.stop()
        _push(None)
        try:
            await sender
        except Exception as e:
            logger.info("[WS] Client gone before results were flushed: %r", e)
        logger.info("[WS] Listen session finished.")

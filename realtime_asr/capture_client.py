from __future__ import annotations

import asyncio
from logging import getLogger
from typing import Optional

import numpy as np
from fastapi import WebSocket, WebSocketDisconnect

from realtime_asr.capture import BlockCallback


logger = getLogger(__name__)


class ClientWebSocketCapture:
    """
    Capture source fed by a browser client over a FastAPI WebSocket.

    The client sends binary messages, each one block of little-endian
    float32 mono samples (what an AudioWorklet / ScriptProcessor produces).
    Text messages are logged and otherwise ignored.

    `disconnected` is set when the client goes away.
    """

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._task: Optional[asyncio.Task] = None
        self.disconnected = asyncio.Event()

    async def open(self, on_block: BlockCallback) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._receive(on_block))

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _receive(self, on_block: BlockCallback) -> None:
        try:
            logger.info("[WS] Client audio capture started.")
            while True:
                msg = await self._ws.receive()

                if msg.get("type") == "websocket.disconnect":
                    logger.info("[WS] Client disconnected.")
                    break

                # mic
                if msg.get("bytes") is not None:
                    data = msg["bytes"]
                    if len(data) % 4:
                        logger.warning("[WS] Dropping block with %d bytes, not float32 aligned.", len(data))
                        continue
                    on_block(np.frombuffer(data, dtype="<f4"))

                # text (might be later used for controls)
                elif msg.get("text") is not None:
                    logger.info("[WS] Text from client: %s", msg["text"])

        except WebSocketDisconnect:
            logger.info("[WS] Client disconnected.")

        except RuntimeError as e:
            if 'Cannot call "receive" once a disconnect message has been received.' in str(e):
                logger.info("[WS] receive(): client disconnected.")
            else:
                logger.exception("[WS] RuntimeError in client capture: %r", e)

        finally:
            self.disconnected.set()
            logger.info("[WS] Client audio capture finished.")

"""
Tests for the browser capture source: float32 blocks in, disconnect handling.

    pytest tests/test_capture_client.py -v
"""
from __future__ import annotations

import asyncio
import unittest
from typing import List, Union

import numpy as np
from fastapi import WebSocketDisconnect

from realtime_asr.capture_client import ClientWebSocketCapture


class FakeClientSocket:
    """Replays queued ASGI receive messages; exceptions in the queue are raised."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[Union[dict, BaseException]] = asyncio.Queue()

    async def receive(self) -> dict:
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def send_audio(self, samples: np.ndarray) -> None:
        self.send_bytes(np.asarray(samples, dtype="<f4").tobytes())

    def send_bytes(self, data: bytes) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def send_text(self, text: str) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})


class TestClientWebSocketCapture(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.ws = FakeClientSocket()
        self.capture = ClientWebSocketCapture(self.ws)
        self.blocks: List[np.ndarray] = []
        await self.capture.open(self.blocks.append)

    async def asyncTearDown(self) -> None:
        await self.capture.close()

    async def _disconnected(self) -> None:
        await asyncio.wait_for(self.capture.disconnected.wait(), timeout=1.0)

    async def test_float32_blocks_reach_callback(self) -> None:
        self.ws.send_audio([0.5, -0.25, 1.0])
        self.ws.send_audio(np.zeros(1024))
        self.ws.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
        await self._disconnected()

        self.assertEqual(len(self.blocks), 2)
        self.assertEqual(self.blocks[0].dtype, np.dtype("<f4"))
        np.testing.assert_array_equal(self.blocks[0], np.array([0.5, -0.25, 1.0], dtype="<f4"))
        self.assertEqual(len(self.blocks[1]), 1024)

    async def test_misaligned_block_is_dropped(self) -> None:
        self.ws.send_bytes(b"\x00" * 5)
        self.ws.send_audio([0.1, 0.2])
        self.ws.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
        await self._disconnected()

        self.assertEqual(len(self.blocks), 1)
        self.assertEqual(len(self.blocks[0]), 2)

    async def test_text_messages_are_ignored(self) -> None:
        self.ws.send_text('{"cmd": "noop"}')
        self.ws.send_audio([0.0])
        self.ws.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
        await self._disconnected()
        self.assertEqual(len(self.blocks), 1)

    async def test_websocket_disconnect_exception(self) -> None:
        self.ws.incoming.put_nowait(WebSocketDisconnect(code=1001))
        await self._disconnected()

    async def test_receive_after_disconnect_runtime_error(self) -> None:
        self.ws.incoming.put_nowait(
            RuntimeError('Cannot call "receive" once a disconnect message has been received.')
        )
        await self._disconnected()

    async def test_other_runtime_error_still_signals_disconnect(self) -> None:
        self.ws.incoming.put_nowait(RuntimeError("unexpected ASGI message"))
        await self._disconnected()

    async def test_close_stops_receiving(self) -> None:
        await self.capture.close()
        self.assertTrue(self.capture.disconnected.is_set())

        self.ws.send_audio([0.3])
        await asyncio.sleep(0.02)
        self.assertEqual(self.blocks, [])

    async def test_open_twice_keeps_one_reader(self) -> None:
        await self.capture.open(self.blocks.append)
        self.ws.send_audio([0.4])
        self.ws.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})
        await self._disconnected()
        self.assertEqual(len(self.blocks), 1)

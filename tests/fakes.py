"""
In-memory stand-ins for the transport and the capture device.

Everything here runs on the test's event loop, so the session code is
exercised end to end without any network or audio hardware.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from websockets.exceptions import ConnectionClosedError

from realtime_asr.session import QwenAsrConfig


def make_config(**overrides: Any) -> QwenAsrConfig:
    """Session config with delays shrunk to milliseconds."""
    values: Dict[str, Any] = dict(
        api_key="sk-test",
        language="en",
        negotiation_delay_s=0.0,
        reconnect_base_delay_s=0.01,
        restart_delay_s=0.02,
        connect_timeout_s=1.0,
        wait_for_session_ack=False,
        enable_server_vad=True,
    )
    values.update(overrides)
    return QwenAsrConfig(**values)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %.1fs" % timeout)
        await asyncio.sleep(0.005)


class FakeChannel:
    """Full-duplex channel: records what is sent, replays what is pushed."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.inbox: asyncio.Queue[Union[str, bytes, BaseException]] = asyncio.Queue()
        self.closed = False
        self.close_calls: List[Tuple[int, str]] = []

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def recv(self) -> Union[str, bytes]:
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_calls.append((code, reason))

    # test helpers

    def push(self, message: Union[dict, str, bytes]) -> None:
        if isinstance(message, dict):
            message = json.dumps(message)
        self.inbox.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server side going away."""
        self.closed = True
        self.inbox.put_nowait(ConnectionClosedError(None, None))

    def messages(self, typ: Optional[str] = None) -> List[dict]:
        decoded = [json.loads(m) for m in self.sent]
        if typ is None:
            return decoded
        return [m for m in decoded if m.get("type") == typ]


class FakeOpener:
    """Opener that hands out FakeChannels and records every attempt."""

    def __init__(self, *, delay_s: float = 0.0) -> None:
        self.calls: List[Tuple[str, Dict[str, str]]] = []
        self.channels: List[FakeChannel] = []
        self.delay_s = delay_s
        self.fail_with: Optional[BaseException] = None
        self.drop_on_open = False

    async def __call__(self, url: str, headers: Dict[str, str]) -> FakeChannel:
        self.calls.append((url, headers))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail_with is not None:
            raise self.fail_with
        channel = FakeChannel()
        if self.drop_on_open:
            channel.drop()
        self.channels.append(channel)
        return channel

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]


class FakeCapture:
    """Capture source driven by the test through `emit`."""

    def __init__(self) -> None:
        self.open_count = 0
        self.close_count = 0
        self.on_block: Optional[Callable[[Any], None]] = None
        self.fail_with: Optional[Exception] = None

    async def open(self, on_block: Callable[[Any], None]) -> None:
        self.open_count += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.on_block = on_block

    async def close(self) -> None:
        self.close_count += 1
        self.on_block = None

    @property
    def is_open(self) -> bool:
        return self.on_block is not None

    def emit(self, samples: Any) -> None:
        assert self.on_block is not None, "capture is not open"
        self.on_block(samples)


class RecordingListener:
    """ConnectionListener that records every callback."""

    def __init__(self) -> None:
        self.running = True
        self.messages: List[Union[str, bytes]] = []
        self.lost: List[Tuple[Any, Optional[Exception]]] = []
        self.reconnected: List[Any] = []
        self.gave_up: List[Exception] = []

    def should_reconnect(self) -> bool:
        return self.running

    async def on_message(self, handle, raw) -> None:
        self.messages.append(raw)

    async def on_connection_lost(self, handle, error) -> None:
        self.lost.append((handle, error))

    async def on_reconnected(self, handle) -> None:
        self.reconnected.append(handle)

    async def on_gave_up(self, error) -> None:
        self.running = False
        self.gave_up.append(error)

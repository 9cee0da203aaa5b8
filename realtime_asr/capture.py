from __future__ import annotations

import asyncio
import wave
from dataclasses import dataclass
from logging import getLogger
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol

import numpy as np

from config import AUDIO_BLOCK_SIZE, AUDIO_SAMPLE_RATE
from realtime_asr.audio import decode_pcm16


logger = getLogger(__name__)

BlockCallback = Callable[[np.ndarray], None]


class CaptureSource(Protocol):
    """
    Source of mono float sample blocks at a fixed rate.

    ``open`` starts delivery of blocks to ``on_block`` (range [-1, 1]),
    ``close`` stops delivery and releases the device. Both are called on the
    session's event loop.
    """
    async def open(self, on_block: BlockCallback) -> None: ...
    async def close(self) -> None: ...


@dataclass(frozen=True)
class WavFormat:
    channels: int
    sample_width_bytes: int
    sample_rate: int
    n_frames: int
    comptype: str
    compname: str


def inspect_wav(path: Path) -> WavFormat:
    path = path.resolve()
    with wave.open(str(path), "rb") as wf:
        return WavFormat(
            channels=wf.getnchannels(),
            sample_width_bytes=wf.getsampwidth(),
            sample_rate=wf.getframerate(),
            n_frames=wf.getnframes(),
            comptype=wf.getcomptype(),
            compname=wf.getcompname(),
        )


def iter_wav_blocks(
        path: Path,
        *,
        block_size: int = AUDIO_BLOCK_SIZE,
        expected_sample_rate: int = AUDIO_SAMPLE_RATE,
) -> Iterator[np.ndarray]:
    """
    Yield float blocks of `block_size` samples from a PCM16 mono WAV file.

    Assumptions/enforced:
      - uncompressed PCM WAV (comptype == 'NONE')
      - expected sample rate, mono, 16-bit
      - the last block is zero-padded to full size
    """
    fmt = inspect_wav(path)

    if fmt.comptype != "NONE":
        raise ValueError(f"{path.name}: compressed WAV not supported (comptype={fmt.comptype} {fmt.compname})")
    if fmt.sample_rate != expected_sample_rate:
        raise ValueError(f"{path.name}: sample_rate={fmt.sample_rate} expected={expected_sample_rate}")
    if fmt.channels != 1:
        raise ValueError(f"{path.name}: channels={fmt.channels} expected=1")
    if fmt.sample_width_bytes != 2:
        raise ValueError(f"{path.name}: sample_width_bytes={fmt.sample_width_bytes} expected=2")
    if block_size <= 0:
        raise ValueError("block_size must be positive")

    with wave.open(str(path), "rb") as wf:
        while True:
            data = wf.readframes(block_size)
            if not data:
                break
            block = decode_pcm16(data)
            if len(block) < block_size:
                block = np.pad(block, (0, block_size - len(block)))
            yield block


class WavFileCapture:
    """
    Plays a WAV file as if it came from a microphone.

    Blocks are delivered with real-time-ish pacing:
      - 1.0 = realtime
      - 0.5 = 2x faster
      - 0.0 = no pacing sleep (still blocked)

    After the file, `post_roll_silence_s` of silence is delivered so the
    server VAD can commit the last utterance. `finished` is set when the
    whole file (and the silence) has been delivered.
    """

    def __init__(
            self,
            path: Path,
            *,
            block_size: int = AUDIO_BLOCK_SIZE,
            sample_rate: int = AUDIO_SAMPLE_RATE,
            realtime_factor: float = 1.0,
            post_roll_silence_s: float = 2.0,
    ) -> None:
        self._path = path
        self._block_size = block_size
        self._sample_rate = sample_rate
        self._realtime_factor = realtime_factor
        self._post_roll_silence_s = post_roll_silence_s
        self._task: Optional[asyncio.Task] = None
        self.finished = asyncio.Event()

    async def open(self, on_block: BlockCallback) -> None:
        if self._task is not None and not self._task.done():
            return
        # validate before we report the device as open
        inspect_wav(self._path)
        self.finished.clear()
        self._task = asyncio.create_task(self._play(on_block))
        logger.info("[CAPTURE] Streaming %s", self._path.name)

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[CAPTURE] Closed %s", self._path.name)

    async def _play(self, on_block: BlockCallback) -> None:
        block_s = self._block_size / self._sample_rate
        cnt = 0
        for block in iter_wav_blocks(self._path, block_size=self._block_size,
                                     expected_sample_rate=self._sample_rate):
            on_block(block)
            cnt += 1
            if cnt % 20 == 0:
                logger.debug("[CAPTURE] Sent block %d...", cnt)
            await asyncio.sleep(block_s * self._realtime_factor)

        silence = np.zeros(self._block_size, dtype=np.float64)
        tot = 0.0
        while tot < self._post_roll_silence_s:
            on_block(silence)
            await asyncio.sleep(block_s * self._realtime_factor)
            tot += block_s

        logger.info("[CAPTURE] Finished %s (%d blocks).", self._path.name, cnt)
        self.finished.set()

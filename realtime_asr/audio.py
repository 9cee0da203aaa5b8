from __future__ import annotations

import base64
import itertools
import uuid
from dataclasses import dataclass
from time import time
from typing import Sequence, Union

import numpy as np


Samples = Union[Sequence[float], np.ndarray]


def encode_pcm16(samples: Samples) -> bytes:
    """
    Convert float samples in [-1, 1] to 16-bit signed little-endian PCM.

    Values outside the range are clamped. Negative values scale by 32768 and
    non-negative ones by 32767, so both -1.0 and 1.0 hit the int16 limits.
    """
    s = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(s < 0, s * 32768.0, s * 32767.0)
    return np.rint(scaled).astype("<i2").tobytes()


def decode_pcm16(pcm: bytes) -> np.ndarray:
    """Inverse of encode_pcm16, up to one quantization step."""
    ints = np.frombuffer(pcm, dtype="<i2").astype(np.float64)
    return np.where(ints < 0, ints / 32768.0, ints / 32767.0)


def make_event_id(kind: str) -> str:
    """Per-message identifier, only used for server side dedup and logging."""
    return f"event_{kind}_{int(time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class AudioFrame:
    """
    One capture block encoded as PCM16LE.

    Attributes:
        pcm: Raw little-endian 16-bit samples.
        sequence: Monotonic tag for diagnostics. Ordering is guaranteed by
            the single connection, not by this number.
    """
    pcm: bytes
    sequence: int

    @property
    def payload(self) -> str:
        return base64.b64encode(self.pcm).decode("ascii")

    @property
    def n_samples(self) -> int:
        return len(self.pcm) // 2


class AudioFramer:
    """Turns capture blocks into transport-ready frames."""

    def __init__(self) -> None:
        self._seq = itertools.count(1)

    def frame(self, samples: Samples) -> AudioFrame:
        return AudioFrame(pcm=encode_pcm16(samples), sequence=next(self._seq))


def audio_append_message(frame: AudioFrame) -> dict:
    return {
        "event_id": make_event_id("audio"),
        "type": "input_audio_buffer.append",
        "audio": frame.payload,
    }

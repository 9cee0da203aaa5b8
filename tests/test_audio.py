"""
Tests for PCM16 framing and the audio append envelope.

    pytest tests/test_audio.py -v
"""
from __future__ import annotations

import base64
import struct
import unittest

import numpy as np

from realtime_asr.audio import (
    AudioFramer,
    audio_append_message,
    decode_pcm16,
    encode_pcm16,
)


class TestEncodePcm16(unittest.TestCase):

    def test_scaling_and_clamping(self) -> None:
        """Negative values scale by 32768, non-negative by 32767, out of range is clamped."""
        pcm = encode_pcm16([0.0, 1.0, -1.0, 0.5, -0.5, 2.0, -3.0])
        self.assertEqual(len(pcm), 14)
        self.assertEqual(
            struct.unpack("<7h", pcm),
            (0, 32767, -32768, 16384, -16384, 32767, -32768),
        )

    def test_little_endian_layout(self) -> None:
        pcm = encode_pcm16([1.0])
        self.assertEqual(pcm, b"\xff\x7f")

    def test_round_trip_within_one_step(self) -> None:
        samples = np.linspace(-1.0, 1.0, 2001)
        restored = decode_pcm16(encode_pcm16(samples))
        self.assertLessEqual(float(np.max(np.abs(restored - samples))), 1.0 / 32767)

    def test_full_block_size(self) -> None:
        pcm = encode_pcm16(np.zeros(4096, dtype=np.float32))
        self.assertEqual(len(pcm), 8192)
        self.assertEqual(pcm, b"\x00" * 8192)

    def test_pure(self) -> None:
        block = [0.1, -0.2, 0.3]
        self.assertEqual(encode_pcm16(block), encode_pcm16(block))


class TestAudioFramer(unittest.TestCase):

    def test_sequence_is_monotonic(self) -> None:
        framer = AudioFramer()
        frames = [framer.frame([0.0] * 4) for _ in range(3)]
        self.assertEqual([f.sequence for f in frames], [1, 2, 3])

    def test_payload_is_base64_of_pcm(self) -> None:
        frame = AudioFramer().frame([0.25, -0.25])
        self.assertEqual(base64.b64decode(frame.payload), frame.pcm)
        self.assertEqual(frame.n_samples, 2)

    def test_append_message(self) -> None:
        frame = AudioFramer().frame([0.0] * 8)
        first = audio_append_message(frame)
        second = audio_append_message(frame)

        self.assertEqual(first["type"], "input_audio_buffer.append")
        self.assertEqual(first["audio"], frame.payload)
        self.assertTrue(first["event_id"].startswith("event_audio_"))
        self.assertNotEqual(first["event_id"], second["event_id"])

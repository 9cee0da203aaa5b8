from __future__ import annotations

import unittest
from typing import List, Tuple

from realtime_asr.errors import ServerError
from realtime_asr.events import (
    ServerErrorEvent,
    TranscriptionCompleted,
    TranscriptionDelta,
    Unknown,
)
from realtime_asr.transcript import TranscriptAssembler


class TestTranscriptAssembler(unittest.TestCase):

    def setUp(self) -> None:
        self.results: List[Tuple[str, bool]] = []
        self.errors: List[ServerError] = []
        self.assembler = TranscriptAssembler(
            on_result=lambda text, final: self.results.append((text, final)),
            on_error=self.errors.append,
        )

    def test_delta_delta_completed(self) -> None:
        self.assembler.on_event(TranscriptionDelta("Hello"))
        self.assembler.on_event(TranscriptionDelta(" world"))
        self.assembler.on_event(TranscriptionCompleted("Hello world."))

        self.assertEqual(self.results, [
            ("Hello", False),
            ("Hello world", False),
            ("Hello world.", True),
        ])

    def test_completed_starts_next_utterance_from_empty(self) -> None:
        self.assembler.on_event(TranscriptionDelta("one"))
        self.assembler.on_event(TranscriptionCompleted("One."))
        self.assertEqual(self.assembler.transcript, "")

        self.assembler.on_event(TranscriptionDelta("two"))
        self.assertEqual(self.results[-1], ("two", False))

    def test_completed_replaces_not_appends(self) -> None:
        self.assembler.on_event(TranscriptionDelta("helo wrld"))
        self.assembler.on_event(TranscriptionCompleted("Hello world."))
        self.assertEqual(self.results[-1], ("Hello world.", True))

    def test_empty_text_produces_no_callback(self) -> None:
        self.assembler.on_event(TranscriptionDelta(""))
        self.assembler.on_event(TranscriptionCompleted(""))
        self.assertEqual(self.results, [])

    def test_error_and_unknown_do_not_touch_transcript(self) -> None:
        self.assembler.on_event(TranscriptionDelta("partial"))
        self.assembler.on_event(ServerErrorEvent({"type": "error", "error": {"code": "X", "message": "boom"}}))
        self.assembler.on_event(Unknown({"type": "input_audio_buffer.speech_started"}))

        self.assertEqual(self.assembler.transcript, "partial")
        self.assertEqual(len(self.results), 1)
        self.assertEqual(len(self.errors), 1)
        self.assertEqual(self.errors[0].code, "X")

    def test_reset(self) -> None:
        self.assembler.on_event(TranscriptionDelta("abc"))
        self.assembler.reset()
        self.assembler.on_event(TranscriptionDelta("d"))
        self.assertEqual(self.results[-1], ("d", False))

    def test_no_callback_registered(self) -> None:
        assembler = TranscriptAssembler()
        assembler.on_event(TranscriptionDelta("quiet"))
        self.assertEqual(assembler.transcript, "quiet")

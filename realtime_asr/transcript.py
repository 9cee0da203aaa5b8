from __future__ import annotations

from logging import getLogger
from typing import Callable, Optional

from realtime_asr.errors import ServerError
from realtime_asr.events import (
    ServerErrorEvent,
    ServerEvent,
    TranscriptionCompleted,
    TranscriptionDelta,
    Unknown,
)


logger = getLogger(__name__)

ResultCallback = Callable[[str, bool], None]
ErrorCallback = Callable[[ServerError], None]


class TranscriptAssembler:
    """
    Rebuilds the transcript of the current utterance from server events.

    Deltas are appended and reported as partial results. A completed event
    replaces the running text, is reported as final and starts the next
    utterance from empty. Every event produces at most one callback.
    """

    def __init__(
            self,
            on_result: Optional[ResultCallback] = None,
            on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.on_result = on_result
        self.on_error = on_error
        self._transcript = ""

    @property
    def transcript(self) -> str:
        return self._transcript

    def reset(self) -> None:
        self._transcript = ""

    def on_event(self, event: ServerEvent) -> None:
        if isinstance(event, TranscriptionDelta):
            logger.debug("[ASR] Transcript delta: %r", event.text)
            self._transcript += event.text
            if self._transcript:
                self._emit(self._transcript, False)
            return

        if isinstance(event, TranscriptionCompleted):
            logger.info("[ASR] Final transcript: %s", event.text)
            self._transcript = event.text
            if self._transcript:
                self._emit(self._transcript, True)
            self._transcript = ""
            return

        if isinstance(event, ServerErrorEvent):
            error = ServerError(event.payload)
            logger.error("[ASR] %s", error)
            if self.on_error:
                self.on_error(error)
            return

        if isinstance(event, Unknown):
            logger.debug("[ASR] Ignoring event: %s", str(event.raw)[:200])

    def _emit(self, text: str, final: bool) -> None:
        if self.on_result:
            self.on_result(text, final)

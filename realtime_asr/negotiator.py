from __future__ import annotations

import json
from logging import getLogger
from time import time
from typing import Optional

from config import (
    AUDIO_SAMPLE_RATE,
    ASR_VAD_THRESHOLD,
    ASR_VAD_SILENCE_DURATION_MS,
)
from realtime_asr.supervisor import ConnectionHandle, ConnectionSupervisor


logger = getLogger(__name__)


SUPPORTED_LANGUAGES = ("en", "ja", "ko", "es", "fr", "de", "zh")
DEFAULT_LANGUAGE = "zh"

# prefix -> supported code, checked in order
_LANGUAGE_PREFIXES = (
    ("en", "en"),
    ("ja", "ja"),
    ("ko", "ko"),
    ("kr", "ko"),
    ("es", "es"),
    ("fr", "fr"),
    ("de", "de"),
    ("zh", "zh"),
)


def map_language(language: str) -> str:
    """Map a language tag (e.g. "en-US", "ja", "kr") to a supported code. Unknown tags map to zh."""
    tag = (language or "").strip().lower()
    for prefix, code in _LANGUAGE_PREFIXES:
        if tag.startswith(prefix):
            return code
    return DEFAULT_LANGUAGE


def build_session_update(
        language: str,
        vad_enabled: bool,
        *,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        vad_threshold: float = ASR_VAD_THRESHOLD,
        silence_duration_ms: int = ASR_VAD_SILENCE_DURATION_MS,
) -> dict:
    turn_detection = None
    if vad_enabled:
        turn_detection = {
            "type": "server_vad",
            "threshold": vad_threshold,
            "silence_duration_ms": silence_duration_ms,
        }
    return {
        "event_id": f"event_session_{int(time() * 1000)}",
        "type": "session.update",
        "session": {
            "modalities": ["text"],
            "input_audio_format": "pcm",
            "sample_rate": sample_rate,
            "input_audio_transcription": {
                "language": map_language(language),
            },
            "turn_detection": turn_detection,
        },
    }


class SessionNegotiator:
    """
    Sends the one-time session.update for a connection and tracks whether
    audio may flow on it.

    By default negotiation is fire-and-forget: once the message is written the
    connection counts as negotiated. With ``wait_for_ack`` the flag is only
    raised when the server confirms with ``session.updated``.
    """

    def __init__(
            self,
            supervisor: ConnectionSupervisor,
            *,
            sample_rate: int = AUDIO_SAMPLE_RATE,
            vad_threshold: float = ASR_VAD_THRESHOLD,
            silence_duration_ms: int = ASR_VAD_SILENCE_DURATION_MS,
            wait_for_ack: bool = False,
    ) -> None:
        self._supervisor = supervisor
        self._sample_rate = sample_rate
        self._vad_threshold = vad_threshold
        self._silence_duration_ms = silence_duration_ms
        self._wait_for_ack = wait_for_ack
        self._sent_on: Optional[ConnectionHandle] = None
        self._acked_on: Optional[ConnectionHandle] = None

    def is_negotiated(self, handle: Optional[ConnectionHandle]) -> bool:
        if handle is None or not handle.is_open:
            return False
        if self._wait_for_ack:
            return self._acked_on is handle
        return self._sent_on is handle

    @property
    def negotiated(self) -> bool:
        return self.is_negotiated(self._supervisor.handle)

    async def negotiate(self, handle: ConnectionHandle, language: str, vad_enabled: bool) -> None:
        """Send session.update on `handle`. Raises SendError; no-op if already sent on this handle."""
        if self._sent_on is handle:
            logger.debug("[ASR] Session already configured on connection #%d.", handle.number)
            return

        message = build_session_update(
            language,
            vad_enabled,
            sample_rate=self._sample_rate,
            vad_threshold=self._vad_threshold,
            silence_duration_ms=self._silence_duration_ms,
        )
        logger.info("[ASR] Sending session update with language: %s",
                    message["session"]["input_audio_transcription"]["language"])
        await self._supervisor.send(handle, json.dumps(message))
        self._sent_on = handle

    def acknowledge(self, handle: ConnectionHandle) -> None:
        """Record the server's session.updated for `handle`."""
        if self._sent_on is not handle:
            logger.warning("[ASR] session.updated for a connection we did not configure, ignoring.")
            return
        self._acked_on = handle
        logger.info("[ASR] Session configuration acknowledged on connection #%d.", handle.number)

    def reset(self) -> None:
        self._sent_on = None
        self._acked_on = None

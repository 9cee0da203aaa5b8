from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from realtime_asr.errors import DecodeError


# DashScope realtime message types
MSG_TRANSCRIPTION_DELTA = "conversation.item.input_audio_transcription.delta"
MSG_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
MSG_SESSION_UPDATED = "session.updated"
MSG_ERROR = "error"


@dataclass(frozen=True)
class TranscriptionDelta:
    """Partial increment of the current utterance."""
    text: str


@dataclass(frozen=True)
class TranscriptionCompleted:
    """Authoritative final text of the current utterance."""
    text: str


@dataclass(frozen=True)
class ServerErrorEvent:
    payload: dict


@dataclass(frozen=True)
class SessionUpdated:
    session: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Unknown:
    raw: Any


ServerEvent = Union[TranscriptionDelta, TranscriptionCompleted, ServerErrorEvent, SessionUpdated, Unknown]


def decode_server_event(raw: Union[str, bytes]) -> ServerEvent:
    """
    Decode one inbound text frame.

    Raises DecodeError for binary frames and anything that is not a JSON
    object. Objects with an unrecognised (or missing) type decode to Unknown.
    """
    if isinstance(raw, (bytes, bytearray)):
        raise DecodeError("unexpected binary message", raw)
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(f"message is not valid JSON: {e}", raw) from e
    if not isinstance(data, dict):
        raise DecodeError(f"message is not a JSON object: {type(data).__name__}", raw)

    typ = data.get("type")
    if typ == MSG_TRANSCRIPTION_DELTA:
        return TranscriptionDelta(text=str(data.get("delta") or ""))
    if typ == MSG_TRANSCRIPTION_COMPLETED:
        return TranscriptionCompleted(text=str(data.get("transcript") or ""))
    if typ == MSG_ERROR:
        return ServerErrorEvent(payload=data)
    if typ == MSG_SESSION_UPDATED:
        session = data.get("session")
        return SessionUpdated(session=session if isinstance(session, dict) else {})
    return Unknown(raw=data)

from realtime_asr.errors import (
    AsrError,
    AuthError,
    ConnectError,
    DecodeError,
    ReconnectExhausted,
    SendError,
    ServerError,
    TransportError,
)
from realtime_asr.recognizer import Recognizer
from realtime_asr.session import QwenAsrConfig, RecognitionSession, SessionPhase, SessionSnapshot

__all__ = [
    "AsrError",
    "AuthError",
    "ConnectError",
    "DecodeError",
    "QwenAsrConfig",
    "Recognizer",
    "RecognitionSession",
    "ReconnectExhausted",
    "SendError",
    "ServerError",
    "SessionPhase",
    "SessionSnapshot",
    "TransportError",
]

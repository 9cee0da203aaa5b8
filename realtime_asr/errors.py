"""
Error taxonomy for the realtime ASR session.

Transport level failures (ConnectError / TransportError) are handled inside
the ConnectionSupervisor and only surface as ReconnectExhausted once the
retry budget is spent. Malformed inbound payloads never travel past the
decoder as anything but a logged DecodeError.
"""

from __future__ import annotations

from typing import Any, Optional


class AsrError(Exception):
    """Base class for every error raised by the realtime ASR package."""


class ConnectError(AsrError):
    """Opening a connection failed."""


class AuthError(ConnectError):
    """Credential is missing or was rejected. Never retried."""


class TransportError(ConnectError):
    """Socket or handshake failure, or an unexpected connection loss."""


class SendError(AsrError):
    """A message could not be written to the connection."""


class DecodeError(AsrError):
    """An inbound message is not a JSON object."""

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message)
        self.raw = raw


class ServerError(AsrError):
    """Application level error reported by the remote service."""

    def __init__(self, payload: dict) -> None:
        self.payload = payload
        detail = payload.get("error") if isinstance(payload.get("error"), dict) else payload
        self.code: Optional[str] = detail.get("code") if isinstance(detail, dict) else None
        message = detail.get("message", str(payload)) if isinstance(detail, dict) else str(payload)
        super().__init__(f"ASR server error ({self.code}): {message}")


class ReconnectExhausted(AsrError):
    """All reconnect attempts failed. The session has been stopped."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up reconnecting after {attempts} attempts (last error: {last_error!r})")

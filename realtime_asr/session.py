from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from logging import getLogger
from typing import Callable, Optional, Union

from config import (
    ASR_CONNECT_TIMEOUT_S,
    ASR_ENABLE_SERVER_VAD,
    ASR_MAX_RECONNECT_ATTEMPTS,
    ASR_MODEL,
    ASR_NEGOTIATION_DELAY_S,
    ASR_REALTIME_URL,
    ASR_RECONNECT_BASE_DELAY_S,
    ASR_RESTART_DELAY_S,
    ASR_VAD_SILENCE_DURATION_MS,
    ASR_VAD_THRESHOLD,
    ASR_WAIT_FOR_SESSION_ACK,
    AUDIO_QUEUE_SIZE,
    AUDIO_SAMPLE_RATE,
    STT_LANGUAGE,
)
from realtime_asr.audio import AudioFrame, AudioFramer, Samples, audio_append_message
from realtime_asr.capture import CaptureSource
from realtime_asr.errors import AsrError, AuthError, DecodeError, SendError
from realtime_asr.events import (
    SessionUpdated,
    TranscriptionCompleted,
    TranscriptionDelta,
    decode_server_event,
)
from realtime_asr.negotiator import SessionNegotiator
from realtime_asr.recognizer import ResultCallback
from realtime_asr.supervisor import ConnectionHandle, ConnectionSupervisor
from realtime_asr.transcript import TranscriptAssembler
from realtime_asr.transport import Opener, build_url


logger = getLogger(__name__)


@dataclass(frozen=True)
class QwenAsrConfig:
    """
    Configuration for the DashScope Qwen realtime ASR session.

    Defaults come from config.py and can be overridden per instance (tests
    shrink the delays to milliseconds).
    """
    api_key: str  # Required: passed at instantiation, not stored in config

    # Provider-specific settings
    model: str = ASR_MODEL
    base_url: str = ASR_REALTIME_URL
    connect_timeout_s: float = ASR_CONNECT_TIMEOUT_S

    # Universal STT settings
    language: str = STT_LANGUAGE
    sample_rate: int = AUDIO_SAMPLE_RATE
    enable_server_vad: bool = ASR_ENABLE_SERVER_VAD
    vad_threshold: float = ASR_VAD_THRESHOLD
    vad_silence_duration_ms: int = ASR_VAD_SILENCE_DURATION_MS

    # Session behaviour
    negotiation_delay_s: float = ASR_NEGOTIATION_DELAY_S
    wait_for_session_ack: bool = ASR_WAIT_FOR_SESSION_ACK
    reconnect_base_delay_s: float = ASR_RECONNECT_BASE_DELAY_S
    max_reconnect_attempts: int = ASR_MAX_RECONNECT_ATTEMPTS
    restart_delay_s: float = ASR_RESTART_DELAY_S
    audio_queue_size: int = AUDIO_QUEUE_SIZE


class SessionPhase(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    NEGOTIATING = "NEGOTIATING"
    STREAMING = "STREAMING"
    RECONNECTING = "RECONNECTING"
    STOPPING = "STOPPING"


_TRANSITIONS = {
    SessionPhase.IDLE: {SessionPhase.STARTING},
    SessionPhase.STARTING: {SessionPhase.NEGOTIATING, SessionPhase.RECONNECTING, SessionPhase.STOPPING},
    SessionPhase.NEGOTIATING: {SessionPhase.STREAMING, SessionPhase.RECONNECTING, SessionPhase.STOPPING},
    SessionPhase.STREAMING: {SessionPhase.RECONNECTING, SessionPhase.STOPPING},
    SessionPhase.RECONNECTING: {SessionPhase.NEGOTIATING, SessionPhase.STOPPING},
    SessionPhase.STOPPING: {SessionPhase.IDLE},
}


@dataclass
class SessionState:
    """Mutable state of one recognition run. Only RecognitionSession writes it."""
    language: str
    credential: str
    phase: SessionPhase = SessionPhase.IDLE
    running: bool = False
    generation: int = 0


@dataclass(frozen=True)
class SessionSnapshot:
    phase: SessionPhase
    language: str
    running: bool
    negotiated: bool
    reconnect_attempts: int
    transcript: str
    frames_sent: int
    frames_dropped: int


StatusCallback = Callable[[SessionPhase], None]
ErrorCallback = Callable[[AsrError], None]


def _cancel(task: Optional[asyncio.Task]) -> None:
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class RecognitionSession:
    """
    Streaming speech recognition against the DashScope realtime endpoint.

    Lifecycle::

        IDLE -> STARTING -> NEGOTIATING -> STREAMING -> STOPPING -> IDLE
                                 ^             |
                                 +-- RECONNECTING

    All state changes happen on one event loop; each transition runs
    between two awaits and is checked against the table above. Audio blocks
    coming from another thread must enter through `feed_threadsafe`.

    A frame is only forwarded while the session runs, the connection is
    open and negotiation on that very connection is done. Everything else
    is dropped, never buffered.
    """

    def __init__(
            self,
            cfg: QwenAsrConfig,
            *,
            capture: Optional[CaptureSource] = None,
            opener: Optional[Opener] = None,
    ) -> None:
        self._cfg = cfg
        self._state = SessionState(language=cfg.language, credential=cfg.api_key)
        self._supervisor = ConnectionSupervisor(
            build_url(cfg.base_url, cfg.model),
            self,
            opener=opener,
            reconnect_base_delay_s=cfg.reconnect_base_delay_s,
            max_attempts=cfg.max_reconnect_attempts,
            connect_timeout_s=cfg.connect_timeout_s,
        )
        self._negotiator = SessionNegotiator(
            self._supervisor,
            sample_rate=cfg.sample_rate,
            vad_threshold=cfg.vad_threshold,
            silence_duration_ms=cfg.vad_silence_duration_ms,
            wait_for_ack=cfg.wait_for_session_ack,
        )
        self._framer = AudioFramer()
        self._assembler = TranscriptAssembler(on_error=self._report_error)
        self._capture = capture
        self._capture_open = False
        self._audio_q: asyncio.Queue[AudioFrame] = asyncio.Queue(maxsize=cfg.audio_queue_size)
        self._sender_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_status: Optional[StatusCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self.frames_sent = 0
        self.frames_dropped = 0

    async def __aenter__(self) -> "RecognitionSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def on_result(self, callback: ResultCallback) -> None:
        self._assembler.on_result = callback

    def on_status(self, callback: StatusCallback) -> None:
        self._on_status = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._on_error = callback

    def status(self) -> bool:
        return self._state.phase is not SessionPhase.IDLE

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def language(self) -> str:
        return self._state.language

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self._state.phase,
            language=self._state.language,
            running=self._state.running,
            negotiated=self._negotiator.negotiated,
            reconnect_attempts=self._supervisor.attempts,
            transcript=self._assembler.transcript,
            frames_sent=self.frames_sent,
            frames_dropped=self.frames_dropped,
        )

    async def start(self) -> None:
        """
        Connect, negotiate and start streaming.

        No-op unless IDLE. Raises AuthError for a blank API key (no connection
        is attempted) and re-raises the initial connect or capture failure
        after tearing everything down again.
        """
        if self._state.phase is not SessionPhase.IDLE:
            logger.info("[ASR] Already running.")
            return
        if not self._state.credential or not self._state.credential.strip():
            logger.error("[ASR] API key is required.")
            raise AuthError("API key is required")

        self._loop = asyncio.get_running_loop()
        self._state.generation += 1
        gen = self._state.generation
        self._state.running = True
        self._supervisor.reset_attempts()
        self._assembler.reset()
        self._transition(SessionPhase.STARTING)
        logger.info("[ASR] Starting recognition (language=%s)...", self._state.language)

        try:
            handle = await self._supervisor.connect(self._state.credential)
            if not self._is_current(gen) or not handle.is_open:
                return  # stopped meanwhile, or the reconnect logic owns it now
            await self._negotiate(handle, gen)
        except asyncio.CancelledError:
            if self._is_current(gen):
                await self._shutdown()
            raise
        except Exception as e:
            if not self._is_current(gen):
                logger.info("[ASR] Start aborted by stop(): %s", e)
                return
            logger.error("[ASR] Error starting recognition: %s", e)
            await self._shutdown()
            raise

    async def stop(self) -> None:
        await self._stop()

    async def set_language(self, language: str) -> None:
        """Store the language. A running session is stopped and started again after a short delay."""
        logger.debug("[ASR] Language set to %s", language)
        self._state.language = language
        if self._state.phase is SessionPhase.IDLE:
            return
        await self.stop()
        self._restart_task = asyncio.create_task(
            self._restart_after(self._state.generation, self._cfg.restart_delay_s)
        )

    def feed(self, samples: Samples) -> None:
        """Capture callback: frame one block and queue it for sending, or drop it."""
        if not self._can_forward(self._supervisor.handle):
            self.frames_dropped += 1
            return
        frame = self._framer.frame(samples)
        try:
            self._audio_q.put_nowait(frame)
        except asyncio.QueueFull:
            self.frames_dropped += 1
            logger.warning("[ASR] Audio queue full, dropping frame %d.", frame.sequence)

    def feed_threadsafe(self, samples: Samples) -> None:
        """Like `feed`, for capture callbacks running outside the event loop."""
        if self._loop is None or self._loop.is_closed():
            self.frames_dropped += 1
            return
        try:
            self._loop.call_soon_threadsafe(self.feed, samples)
        except RuntimeError:
            # loop closed after the check above
            self.frames_dropped += 1

    # ------------------------------------------------------------------
    # ConnectionListener
    # ------------------------------------------------------------------

    def should_reconnect(self) -> bool:
        return self._state.running

    async def on_message(self, handle: ConnectionHandle, raw: Union[str, bytes]) -> None:
        if handle is not self._supervisor.handle:
            return
        try:
            event = decode_server_event(raw)
        except DecodeError as e:
            logger.warning("[ASR] Failed to parse message: %s", e)
            return

        logger.debug("[ASR] Received event: %s", type(event).__name__)
        if isinstance(event, SessionUpdated):
            self._negotiator.acknowledge(handle)
            return
        if isinstance(event, (TranscriptionDelta, TranscriptionCompleted)):
            self._supervisor.mark_healthy(handle)
        self._assembler.on_event(event)

    async def on_connection_lost(self, handle: ConnectionHandle, error: Optional[Exception]) -> None:
        if not self._state.running:
            return
        logger.warning("[ASR] Connection #%d lost: %s", handle.number, error or "closed by server")
        self._negotiator.reset()
        self._assembler.reset()
        self._drain_audio()
        self._transition(SessionPhase.RECONNECTING)

    async def on_reconnected(self, handle: ConnectionHandle) -> None:
        if not self._state.running:
            await self._supervisor.close(handle)
            return
        logger.info("[ASR] Reconnected (connection #%d), negotiating again.", handle.number)
        try:
            await self._negotiate(handle, self._state.generation)
        except AsrError as e:
            logger.error("[ASR] Resuming after reconnect failed: %s", e)
            await self._stop(e)
        except Exception as e:
            logger.exception("[ASR] Resuming after reconnect crashed: %r", e)
            await self._stop(AsrError(f"Resuming after reconnect failed: {e!r}"))

    async def on_gave_up(self, error: AsrError) -> None:
        logger.error("[ASR] %s", error)
        await self._stop(error)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_current(self, gen: int) -> bool:
        return self._state.running and self._state.generation == gen

    def _can_forward(self, handle: Optional[ConnectionHandle]) -> bool:
        return (
            self._state.running
            and handle is not None
            and handle.is_open
            and self._negotiator.is_negotiated(handle)
        )

    async def _negotiate(self, handle: ConnectionHandle, gen: int) -> None:
        if not handle.is_open:
            return
        self._transition(SessionPhase.NEGOTIATING)
        # let the server finish initialising its side of the session
        await asyncio.sleep(self._cfg.negotiation_delay_s)
        if not self._is_current(gen) or not handle.is_open:
            return

        try:
            await self._negotiator.negotiate(handle, self._state.language, self._cfg.enable_server_vad)
        except SendError as e:
            logger.warning("[ASR] Session update failed: %s", e)
            return

        if not self._is_current(gen) or not handle.is_open:
            return
        self._transition(SessionPhase.STREAMING)
        await self._open_audio()

    async def _open_audio(self) -> None:
        if self._sender_task is None or self._sender_task.done():
            self._sender_task = asyncio.create_task(self._send_audio_loop())
        if self._capture is None or self._capture_open:
            return
        await self._capture.open(self.feed)
        self._capture_open = True
        logger.info("[ASR] Audio capture started.")

    async def _send_audio_loop(self) -> None:
        """Single consumer of the audio queue, keeps frames in capture order."""
        try:
            while True:
                frame = await self._audio_q.get()
                handle = self._supervisor.handle
                if not self._can_forward(handle):
                    self.frames_dropped += 1
                    continue
                try:
                    await self._supervisor.send(handle, json.dumps(audio_append_message(frame)))
                    self.frames_sent += 1
                except SendError as e:
                    logger.warning("[ASR] Error sending audio frame %d: %s", frame.sequence, e)
        finally:
            logger.debug("[ASR] Audio sender finished.")

    def _drain_audio(self) -> None:
        while True:
            try:
                self._audio_q.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.frames_dropped += 1

    async def _restart_after(self, gen: int, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        if gen != self._state.generation or self._state.phase is not SessionPhase.IDLE:
            logger.info("[ASR] Restart skipped, session changed in the meantime.")
            return
        try:
            await self.start()
        except AsrError as e:
            logger.error("[ASR] Restart failed: %s", e)
            self._report_error(e)
        except Exception as e:
            logger.exception("[ASR] Restart crashed: %r", e)
            self._report_error(AsrError(f"Restart failed: {e!r}"))

    async def _stop(self, error: Optional[AsrError] = None) -> None:
        self._state.generation += 1
        _cancel(self._restart_task)
        if self._state.phase is SessionPhase.IDLE:
            return
        if self._state.phase is SessionPhase.STOPPING:
            return  # teardown already in progress
        logger.info("[ASR] Stopping recognition...")
        self._transition(SessionPhase.STOPPING)
        if error is not None:
            self._report_error(error)
        await self._shutdown()

    async def _shutdown(self) -> None:
        """Release capture, sender and connection. Ends in IDLE."""
        self._state.running = False
        self._transition(SessionPhase.STOPPING)
        try:
            if self._capture is not None and self._capture_open:
                self._capture_open = False
                try:
                    await self._capture.close()
                    logger.info("[ASR] Audio capture stopped.")
                except Exception as e:
                    logger.exception("[ASR] Error closing capture: %r", e)
        finally:
            sender, self._sender_task = self._sender_task, None
            if sender is not None and not sender.done() and sender is not asyncio.current_task():
                sender.cancel()
                try:
                    await sender
                except asyncio.CancelledError:
                    pass
            self._drain_audio()
            await self._supervisor.shutdown()
            self._negotiator.reset()
            self._assembler.reset()
            self._transition(SessionPhase.IDLE)

    def _transition(self, to_phase: SessionPhase) -> None:
        from_phase = self._state.phase
        if from_phase is to_phase:
            return
        if to_phase not in _TRANSITIONS[from_phase]:
            raise RuntimeError(f"Invalid session transition {from_phase.value} -> {to_phase.value}")
        self._state.phase = to_phase
        logger.debug("[ASR] %s -> %s", from_phase.value, to_phase.value)
        if self._on_status:
            self._on_status(to_phase)

    def _report_error(self, error: AsrError) -> None:
        if self._on_error:
            self._on_error(error)

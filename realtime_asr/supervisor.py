from __future__ import annotations

import asyncio
import itertools
from enum import Enum
from logging import getLogger
from typing import Optional, Protocol, Union

from websockets import ConnectionClosed, ConnectionClosedOK
from websockets.exceptions import InvalidHandshake, InvalidStatus, InvalidURI

from config import (
    ASR_CONNECT_TIMEOUT_S,
    ASR_MAX_RECONNECT_ATTEMPTS,
    ASR_RECONNECT_BASE_DELAY_S,
)
from realtime_asr.errors import (
    AsrError,
    AuthError,
    ConnectError,
    ReconnectExhausted,
    SendError,
    TransportError,
)
from realtime_asr.transport import Channel, Opener, auth_headers, open_websocket


logger = getLogger(__name__)


class HandleState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ConnectionHandle:
    """One physical connection. Opaque to callers beyond `is_open`."""

    def __init__(self, channel: Channel, number: int) -> None:
        self.channel = channel
        self.number = number
        self.state = HandleState.OPEN
        self.rx_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state is HandleState.OPEN

    def __repr__(self) -> str:
        return f"<ConnectionHandle #{self.number} {self.state.value}>"


class ConnectionListener(Protocol):
    """Callbacks the supervisor drives. Implemented by the owning session."""

    def should_reconnect(self) -> bool: ...
    async def on_message(self, handle: ConnectionHandle, raw: Union[str, bytes]) -> None: ...
    async def on_connection_lost(self, handle: ConnectionHandle, error: Optional[Exception]) -> None: ...
    async def on_reconnected(self, handle: ConnectionHandle) -> None: ...
    async def on_gave_up(self, error: AsrError) -> None: ...


def _cancel(task: Optional[asyncio.Task]) -> None:
    """Cancel a task unless it is finished or is the one running this code."""
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class ConnectionSupervisor:
    """
    Owns the connection lifecycle: connect, send, receive dispatch, close and
    reconnect with linear backoff.

    Reconnect attempt n is scheduled ``base_delay_s * n`` after the loss. Once
    ``max_attempts`` reconnects have been spent, the next loss (or failed
    attempt) is reported to the listener as ReconnectExhausted and nothing
    else is tried until ``reset_attempts()``.

    Every pending connect and reconnect timer captures the current epoch;
    ``shutdown()`` bumps it, so anything started before a shutdown cannot
    leave a live connection behind.
    """

    def __init__(
            self,
            url: str,
            listener: ConnectionListener,
            *,
            opener: Optional[Opener] = None,
            reconnect_base_delay_s: float = ASR_RECONNECT_BASE_DELAY_S,
            max_attempts: int = ASR_MAX_RECONNECT_ATTEMPTS,
            connect_timeout_s: float = ASR_CONNECT_TIMEOUT_S,
    ) -> None:
        self._url = url
        self._listener = listener
        self._opener = opener or open_websocket
        self._base_delay_s = reconnect_base_delay_s
        self._max_attempts = max_attempts
        self._connect_timeout_s = connect_timeout_s

        self._handle: Optional[ConnectionHandle] = None
        self._connecting: Optional[asyncio.Task] = None
        self._connecting_epoch = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._credential = ""
        self._epoch = 0
        self._numbers = itertools.count(1)
        self._attempts = 0

    @property
    def handle(self) -> Optional[ConnectionHandle]:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle is not None and self._handle.is_open

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def attempts(self) -> int:
        return self._attempts

    def reset_attempts(self) -> None:
        self._attempts = 0

    def mark_healthy(self, handle: ConnectionHandle) -> None:
        """The server is doing real work on `handle`; give it the full reconnect budget again."""
        if handle is self._handle and handle.is_open and self._attempts:
            logger.debug("[ASR] Connection #%d healthy, reconnect budget restored.", handle.number)
            self._attempts = 0

    # ------------------------------------------------------------------
    # connect / send / close
    # ------------------------------------------------------------------

    async def connect(self, credential: str) -> ConnectionHandle:
        """
        Open a connection, or join the one already open / in flight.

        Raises:
            AuthError: blank credential (checked before any network attempt)
                or the handshake was rejected with 401/403.
            TransportError: socket, handshake or timeout failure.
            ConnectError: the attempt was invalidated by shutdown().
        """
        if not credential or not credential.strip():
            raise AuthError("API key is required")
        if self.is_open:
            return self._handle
        if self._connecting is None or self._connecting_epoch != self._epoch:
            self._credential = credential
            task = asyncio.create_task(self._open(credential, self._epoch))
            task.add_done_callback(self._clear_connecting)
            self._connecting = task
            self._connecting_epoch = self._epoch
        return await asyncio.shield(self._connecting)

    def _clear_connecting(self, task: asyncio.Task) -> None:
        if self._connecting is task:
            self._connecting = None
        if not task.cancelled():
            task.exception()  # mark retrieved, the awaiting caller reports it

    async def _open(self, credential: str, epoch: int) -> ConnectionHandle:
        logger.info("[ASR] Connecting to %s ...", self._url)
        try:
            channel = await asyncio.wait_for(
                self._opener(self._url, auth_headers(credential)),
                timeout=self._connect_timeout_s,
            )
        except asyncio.TimeoutError:
            raise TransportError(f"Connection timed out after {self._connect_timeout_s}s") from None
        except InvalidStatus as e:
            status = e.response.status_code
            if status in (401, 403):
                raise AuthError(f"API key rejected (HTTP {status})") from e
            raise TransportError(f"Handshake rejected (HTTP {status})") from e
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise TransportError(f"Failed to connect: {e}") from e

        if epoch != self._epoch:
            logger.info("[ASR] Connect finished after shutdown, closing it again.")
            await self._close_channel(channel)
            raise ConnectError("Connection attempt superseded by shutdown")

        handle = ConnectionHandle(channel, next(self._numbers))
        self._handle = handle
        handle.rx_task = asyncio.create_task(self._recv_loop(handle))
        logger.info("[ASR] Connection #%d open.", handle.number)
        return handle

    async def send(self, handle: Optional[ConnectionHandle], message: str) -> None:
        if handle is None or not handle.is_open:
            raise SendError("Connection is not open")
        try:
            await handle.channel.send(message)
        except ConnectionClosed as e:
            raise SendError(f"Connection closed while sending: {e}") from e

    async def close(self, handle: Optional[ConnectionHandle], code: int = 1000,
                    reason: str = "Recognition stopped") -> None:
        """Close `handle`. Safe on None and on handles that are already closed."""
        if handle is None:
            return
        if self._handle is handle:
            self._handle = None
        if not handle.is_open:
            return
        handle.state = HandleState.CLOSED
        _cancel(handle.rx_task)
        logger.info("[ASR] Closing connection #%d: %s", handle.number, reason)
        await self._close_channel(handle.channel, code, reason)

    async def shutdown(self) -> None:
        """Close the current connection and drop any pending connect or reconnect."""
        self._epoch += 1
        _cancel(self._reconnect_task)
        self._reconnect_task = None
        await self.close(self._handle)

    @staticmethod
    async def _close_channel(channel: Channel, code: int = 1000, reason: str = "") -> None:
        try:
            await channel.close(code, reason)
        except Exception as e:
            logger.debug("[ASR] Ignoring error while closing connection: %r", e)

    # ------------------------------------------------------------------
    # receive dispatch
    # ------------------------------------------------------------------

    async def _recv_loop(self, handle: ConnectionHandle) -> None:
        error: Optional[Exception] = None
        try:
            while handle.is_open:
                raw = await handle.channel.recv()
                try:
                    await self._listener.on_message(handle, raw)
                except Exception as e:
                    logger.exception("[ASR] Message handler failed: %r", e)
        except ConnectionClosedOK as e:
            logger.info("[ASR] Connection #%d closed by server (code=%s).",
                        handle.number, e.rcvd.code if e.rcvd else None)
        except ConnectionClosed as e:
            logger.warning("[ASR] Connection #%d closed unexpectedly: %s", handle.number, e)
            error = TransportError(f"Connection closed unexpectedly: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("[ASR] Receiver for connection #%d crashed: %r", handle.number, e)
            error = TransportError(f"Receiver crashed: {e!r}")

        if not handle.is_open:
            return  # closed locally
        handle.state = HandleState.CLOSED
        if self._handle is handle:
            self._handle = None

        await self._listener.on_connection_lost(handle, error)
        if self._listener.should_reconnect():
            self._schedule_reconnect(error)

    # ------------------------------------------------------------------
    # reconnect
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, error: Optional[Exception]) -> None:
        if self.reconnect_pending:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect(self._epoch, error))

    async def _reconnect(self, epoch: int, error: Optional[Exception]) -> None:
        while epoch == self._epoch:
            if self._attempts >= self._max_attempts:
                self._reconnect_task = None
                logger.error("[ASR] Reconnect attempts exhausted (%d/%d).", self._attempts, self._max_attempts)
                await self._listener.on_gave_up(ReconnectExhausted(self._attempts, error))
                return

            self._attempts += 1
            delay = self._base_delay_s * self._attempts
            logger.info("[ASR] Attempting to reconnect in %.1fs (%d/%d)...",
                        delay, self._attempts, self._max_attempts)
            await asyncio.sleep(delay)

            if epoch != self._epoch or not self._listener.should_reconnect():
                logger.info("[ASR] Reconnect skipped, session is no longer running.")
                return

            try:
                handle = await self.connect(self._credential)
            except AuthError as e:
                self._reconnect_task = None
                logger.error("[ASR] Reconnect rejected: %s", e)
                await self._listener.on_gave_up(e)
                return
            except ConnectError as e:
                logger.warning("[ASR] Reconnect attempt %d failed: %s", self._attempts, e)
                error = e
                continue

            if not handle.is_open:
                # lost before we got here; its loss saw this attempt still pending
                logger.warning("[ASR] Connection #%d dropped right after reconnect.", handle.number)
                error = TransportError("Connection dropped right after reconnect")
                continue

            # detach first: a loss during negotiation must be able to schedule a new attempt
            self._reconnect_task = None
            await self._listener.on_reconnected(handle)
            return

"""
Transport channel: the full-duplex message connection to the ASR service.

The supervisor only relies on the small ``Channel`` protocol below, which a
``websockets`` ``ClientConnection`` satisfies as-is. Tests substitute an
in-memory channel through the ``Opener`` callable.

Authentication rides in the handshake headers, never in the message body::

    Authorization: Bearer <api key>
    OpenAI-Beta: realtime=v1
"""

from __future__ import annotations

from logging import getLogger
from typing import Awaitable, Callable, Dict, Protocol, Union
from urllib.parse import urlencode

from websockets import connect


logger = getLogger(__name__)


class Channel(Protocol):
    async def send(self, message: str) -> None: ...
    async def recv(self) -> Union[str, bytes]: ...
    async def close(self, code: int = 1000, reason: str = "") -> None: ...


Opener = Callable[[str, Dict[str, str]], Awaitable[Channel]]


def build_url(base_url: str, model: str) -> str:
    return f"{base_url}?{urlencode({'model': model})}"


def auth_headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "OpenAI-Beta": "realtime=v1",
    }


async def open_websocket(url: str, headers: Dict[str, str]) -> Channel:
    """Open a websocket connection to the realtime endpoint."""
    logger.debug("[ASR] Opening websocket to %s", url)
    return await connect(
        url,
        additional_headers=headers,
        ping_interval=10,
        ping_timeout=10,
        close_timeout=5,
        max_queue=32,
    )

"""
Recognizer Protocol: the capability every speech recognizer variant exposes.

A recognizer is anything the application can start, stop, re-target at a
different language and listen to for results. The protocol uses structural
typing (typing.Protocol), so variants do not inherit from a shared base
class; the application picks one by configuration and talks to it only
through these methods.

Lifecycle
---------
1. **Construction**: instantiate with a frozen dataclass config (API key,
   model, language, VAD params). No network calls happen here.

2. **Running**: ``await start()`` opens whatever the variant needs
   (connection, capture device). Results arrive through the callback
   registered with ``on_result(cb)`` as ``cb(text, final)``:

   - ``final=False``: partial text of the current utterance, may still change.
   - ``final=True``: committed text of the utterance.

3. **Language change**: ``await set_language(code)``. Variants may apply it
   live or, like the streaming session, restart themselves.

4. **Stopping**: ``await stop()`` releases everything. Calling it twice is
   harmless, and ``start()`` may be called again afterwards.

``status()`` tells whether the recognizer is doing anything at all.

The realtime streaming session (``realtime_asr.session.RecognitionSession``)
is the variant shipped here.
"""

from __future__ import annotations

from typing import Callable, Protocol


ResultCallback = Callable[[str, bool], None]


class Recognizer(Protocol):
    """
    Structural protocol for speech recognizers.

    Any class implementing these methods is a valid recognizer, no
    inheritance required. See the module docstring for lifecycle details.
    """
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    async def set_language(self, language: str) -> None: ...

    def status(self) -> bool: ...
    def on_result(self, callback: ResultCallback) -> None: ...

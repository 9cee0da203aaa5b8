"""
Transcribe a WAV file through the realtime ASR session
=====================================================

Streams a 16 kHz mono 16-bit WAV file with real-time pacing, exactly as a
microphone would deliver it, and prints partial and final results as they
arrive. Useful to check credentials, language mapping and VAD settings
without any audio hardware.

Usage
-----
    source .venv/bin/activate
    python transcribe.py path/to/file.wav --language en
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from logging import getLogger, INFO
from pathlib import Path
from typing import List

from config import DASHSCOPE_API_KEY, STT_LANGUAGE
from realtime_asr.capture import WavFileCapture
from realtime_asr.errors import AsrError
from realtime_asr.session import QwenAsrConfig, RecognitionSession, SessionPhase
from realtime_asr.utils import setup_logging

logger = getLogger(__name__)


async def transcribe_wav_realtime(
        cfg: QwenAsrConfig,
        wav_path: Path,
        *,
        realtime_factor: float = 1.0,
        silence_s: float = 2.0,
) -> str:
    """
    Run one session over a WAV file and return the final transcripts joined by space.

    The session ends when the file (plus trailing silence for VAD) has been
    delivered, or earlier if the session gives up reconnecting.
    """
    capture = WavFileCapture(wav_path, realtime_factor=realtime_factor, post_roll_silence_s=silence_s)
    session = RecognitionSession(cfg, capture=capture)
    finals: List[str] = []
    stopped = asyncio.Event()

    def _on_result(text: str, final: bool) -> None:
        if final:
            finals.append(text)
            print(f"[final]   {text}", flush=True)
        else:
            print(f"[partial] {text}", flush=True)

    def _on_status(phase: SessionPhase) -> None:
        logger.info("Session: %s", phase.value)
        if phase is SessionPhase.IDLE:
            stopped.set()

    session.on_result(_on_result)
    session.on_status(_on_status)
    session.on_error(lambda e: logger.error("Session error: %s", e))

    await session.start()
    try:
        _, pending = await asyncio.wait(
            {asyncio.create_task(capture.finished.wait()), asyncio.create_task(stopped.wait())},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for t in pending:
            t.cancel()
        # give the server a moment to commit the last utterance
        if not stopped.is_set():
            await asyncio.sleep(silence_s)
    finally:
        await session.stop()

    return " ".join(finals)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Stream a WAV file to the realtime ASR service.")
    parser.add_argument("wav", type=Path, help="16 kHz mono 16-bit PCM WAV file")
    parser.add_argument("--language", default=STT_LANGUAGE, help="language tag, e.g. en, ja, zh-CN")
    parser.add_argument("--realtime-factor", type=float, default=1.0, help="1.0 = realtime, 0.0 = no pacing")
    parser.add_argument("--no-vad", action="store_true", help="disable server side VAD")
    args = parser.parse_args()

    cfg = QwenAsrConfig(api_key=DASHSCOPE_API_KEY, language=args.language, enable_server_vad=not args.no_vad)
    try:
        transcript = await transcribe_wav_realtime(cfg, args.wav, realtime_factor=args.realtime_factor)
    except AsrError as e:
        logger.error("Transcription failed: %s", e)
        return 1

    print(f"\nTranscript: {transcript}")
    return 0


if __name__ == "__main__":
    setup_logging(INFO)
    sys.exit(asyncio.run(main()))

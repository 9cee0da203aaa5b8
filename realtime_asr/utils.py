from datetime import datetime
from logging import getLogger, getLevelName, basicConfig, DEBUG, INFO, WARNING, FileHandler, Formatter, Filter, LogRecord
from pathlib import Path
from typing import Optional

from config import LOG_LEVEL, LOG_PATH


# Loggers that belong to this project; everything else is third party.
PROJECT_LOGGERS = ("realtime_asr", "app", "transcribe", "__main__")

# Chatty libraries, held at INFO even when the console runs at DEBUG.
QUIET_LOGGERS = ("websockets.client", "websockets.server", "uvicorn", "uvicorn.access", "fastapi")

_LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(funcName)s(): %(message)s"

_file_handler: Optional[FileHandler] = None


def _is_project(name: str) -> bool:
    return any(name == p or name.startswith(p + ".") for p in PROJECT_LOGGERS)


class _ProjectDebugFilter(Filter):
    """Session traces (frames, deltas) at any level, library records from INFO up."""
    def filter(self, record: LogRecord) -> bool:
        return _is_project(record.name) or record.levelno >= INFO


def _console_level() -> int:
    # DEV / PROD shortcuts, otherwise a standard level name such as "INFO"
    if LOG_LEVEL == "DEV":
        return DEBUG
    if LOG_LEVEL == "PROD":
        return WARNING
    level = getLevelName(LOG_LEVEL)
    return level if isinstance(level, int) else INFO


def setup_logging(level: Optional[int] = None) -> Path:
    """
    Console logging at `level` (default from LOG_LEVEL) plus one session log
    file under LOG_PATH with full DEBUG detail for the ASR code.

    Safe to call more than once: the file handler is only installed the
    first time. Returns the path of the log file.
    """
    global _file_handler

    basicConfig(level=level if level is not None else _console_level(), format=_LOG_FORMAT)
    for name in QUIET_LOGGERS:
        getLogger(name).setLevel(INFO)

    if _file_handler is not None:
        return Path(_file_handler.baseFilename)

    LOG_PATH.mkdir(parents=True, exist_ok=True)
    log_file = LOG_PATH / f"asr_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    _file_handler = FileHandler(log_file, encoding="utf-8")
    _file_handler.setLevel(DEBUG)
    _file_handler.setFormatter(Formatter(_LOG_FORMAT))
    _file_handler.addFilter(_ProjectDebugFilter())
    getLogger().addHandler(_file_handler)

    getLogger(__name__).info("[LOG] Session log: %s", log_file)
    return log_file

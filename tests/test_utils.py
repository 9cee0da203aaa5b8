from __future__ import annotations

import tempfile
import unittest
from logging import DEBUG, INFO, LogRecord, getLogger
from pathlib import Path
from unittest import mock

from realtime_asr import utils


def _record(name: str, level: int) -> LogRecord:
    return LogRecord(name, level, __file__, 1, "msg", None, None)


class TestProjectDebugFilter(unittest.TestCase):

    def test_project_records_pass_at_debug(self) -> None:
        f = utils._ProjectDebugFilter()
        for name in ("realtime_asr.session", "app", "transcribe", "__main__"):
            self.assertTrue(f.filter(_record(name, DEBUG)), name)

    def test_library_records_need_info(self) -> None:
        f = utils._ProjectDebugFilter()
        self.assertFalse(f.filter(_record("websockets.client", DEBUG)))
        self.assertFalse(f.filter(_record("application", DEBUG)))
        self.assertTrue(f.filter(_record("websockets.client", INFO)))


class TestSetupLogging(unittest.TestCase):

    def test_file_handler_installed_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_dir = Path(tmp) / "log"
            with mock.patch.object(utils, "LOG_PATH", log_dir), mock.patch.object(utils, "_file_handler", None):
                first = utils.setup_logging(INFO)
                handler = utils._file_handler
                try:
                    second = utils.setup_logging(INFO)
                    self.assertEqual(first, second)
                    self.assertEqual(first.parent, log_dir)
                    self.assertTrue(first.name.startswith("asr_"))
                    self.assertEqual(getLogger().handlers.count(handler), 1)
                finally:
                    getLogger().removeHandler(handler)
                    handler.close()

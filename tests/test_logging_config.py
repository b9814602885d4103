"""Tests for the logging setup helpers."""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from scancert.core.constants import MAX_LOG_FILE_SIZE
from scancert.logging_config import (
    STAGE_LOG_LEVELS,
    ScanLogger,
    debug_mode,
    get_logger,
    resolve_level,
)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    root_level = root.level
    stage_levels = {name: logging.getLogger(name).level for name in STAGE_LOG_LEVELS}
    yield
    ScanLogger.reset_logging()
    root.setLevel(root_level)
    for name, level in stage_levels.items():
        logging.getLogger(name).setLevel(level)


class TestScanLogger:
    def test_file_handler_and_stage_levels(self, tmp_path):
        log_file = tmp_path / "logs" / "scan.log"

        handlers = ScanLogger.setup_logging(level="warning", log_file=log_file, console=True)

        rotating = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == MAX_LOG_FILE_SIZE
        assert rotating[0].backupCount == 3
        assert rotating[0].level == logging.DEBUG
        console = [h for h in handlers if not isinstance(h, RotatingFileHandler)]
        assert console[0].level == logging.WARNING

        assert logging.getLogger("scancert.capture").level == logging.INFO
        assert logging.getLogger("scancert.reporting").level == logging.WARNING
        assert logging.getLogger("scancert.pipeline").level == logging.INFO

        logging.getLogger("scancert.capture").info("attempt 1/3")
        rotating[0].flush()
        assert "attempt 1/3" in log_file.read_text()

    def test_module_level_overrides(self):
        ScanLogger.setup_logging(console=False, module_levels={"scancert.reporting": "DEBUG"})

        assert logging.getLogger("scancert.reporting").level == logging.DEBUG
        assert logging.getLogger("scancert.underlay").level == logging.INFO

    def test_reconfiguring_replaces_only_own_handlers(self, tmp_path):
        root = logging.getLogger()
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            first = ScanLogger.setup_logging(log_file=tmp_path / "a.log")
            second = ScanLogger.setup_logging(log_file=tmp_path / "b.log")

            assert foreign in root.handlers
            assert not any(h in root.handlers for h in first)
            assert all(h in root.handlers for h in second)
        finally:
            root.removeHandler(foreign)

    def test_debug_logging_writes_session_folder(self, tmp_path):
        path = ScanLogger.setup_debug_logging("calib-run", log_root=tmp_path)

        assert path == str(tmp_path / "calib-run" / "debug.log")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "Debug session started: calib-run" in (tmp_path / "calib-run" / "debug.log").read_text()

    def test_debug_mode_wrapper(self, tmp_path):
        path = debug_mode("wrapped", log_root=tmp_path)

        assert path.endswith("debug.log")
        assert (tmp_path / "wrapped").is_dir()


class TestHelpers:
    @pytest.mark.parametrize("value,expected", [
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        (logging.ERROR, logging.ERROR),
        ("verbose", logging.INFO),
    ])
    def test_resolve_level(self, value, expected):
        assert resolve_level(value) == expected

    def test_get_logger_namespace(self):
        assert get_logger("capture").name == "scancert.capture"
        assert get_logger("scancert.pipeline").name == "scancert.pipeline"

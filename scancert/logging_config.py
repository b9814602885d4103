"""
Logging setup for applications embedding the scan pipeline.

Stages obtain their loggers with ``logging.getLogger(__name__)`` and never
configure handlers themselves. ``ScanLogger`` installs a console handler, an
optional rotating file handler and the per-stage levels below; calling it
again replaces only the handlers it installed earlier.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional, Union

from .core.constants import LOG_FORMAT, MAX_LOG_FILE_SIZE

LOG_BACKUP_COUNT = 3
DEBUG_LOG_NAME = 'debug.log'
FILE_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'

# Default level per pipeline stage
STAGE_LOG_LEVELS: Dict[str, int] = {
    'scancert.capture': logging.INFO,
    'scancert.calibration': logging.INFO,
    'scancert.underlay': logging.INFO,
    'scancert.reporting': logging.WARNING,
    'scancert.pipeline': logging.INFO,
    'scancert.core': logging.WARNING,
}

Level = Union[str, int]


def resolve_level(level: Level, default: int = logging.INFO) -> int:
    """Numeric level for a name such as ``'debug'`` or an int level."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else default


def default_log_root() -> Path:
    return Path.home() / '.scancert' / 'logs'


class ScanLogger:
    """Installs and removes the scan pipeline's logging handlers."""

    _installed: List[logging.Handler] = []

    @classmethod
    def setup_logging(
        cls,
        level: Level = 'INFO',
        log_file: Optional[Union[str, Path]] = None,
        console: bool = True,
        module_levels: Optional[Dict[str, Level]] = None
    ) -> List[logging.Handler]:
        """
        Configure the root logger for a scan run.

        Args:
            level: Console level
            log_file: Rotating log file receiving every record, if given
            console: Whether to log to stdout
            module_levels: Overrides of ``STAGE_LOG_LEVELS``

        Returns:
            The handlers that were installed
        """
        cls.reset_logging()

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)

        handlers: List[logging.Handler] = []
        if console:
            stream = logging.StreamHandler(sys.stdout)
            stream.setLevel(resolve_level(level))
            stream.setFormatter(logging.Formatter(LOG_FORMAT))
            handlers.append(stream)

        if log_file:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(path, maxBytes=MAX_LOG_FILE_SIZE, backupCount=LOG_BACKUP_COUNT)
            rotating.setLevel(logging.DEBUG)
            rotating.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            handlers.append(rotating)

        for handler in handlers:
            root.addHandler(handler)
        cls._installed = handlers

        levels = dict(STAGE_LOG_LEVELS)
        levels.update({name: resolve_level(value) for name, value in (module_levels or {}).items()})
        for name, stage_level in levels.items():
            logging.getLogger(name).setLevel(stage_level)

        return handlers

    @classmethod
    def reset_logging(cls) -> None:
        """Remove and close the handlers installed by ``setup_logging``."""
        root = logging.getLogger()
        for handler in cls._installed:
            root.removeHandler(handler)
            handler.close()
        cls._installed = []

    @classmethod
    def setup_debug_logging(
        cls,
        session_name: Optional[str] = None,
        log_root: Optional[Union[str, Path]] = None
    ) -> str:
        """
        Log everything for one session into ``<log_root>/<session>/debug.log``.

        Args:
            session_name: Folder name; a timestamped name when omitted
            log_root: Parent of the session folders (default ``~/.scancert/logs``)

        Returns:
            Path of the debug log file
        """
        session = session_name or f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        root = Path(log_root) if log_root is not None else default_log_root()
        log_file = root / session / DEBUG_LOG_NAME

        cls.setup_logging(level='DEBUG', log_file=log_file)

        logger = logging.getLogger('scancert')
        logger.info(f"Debug session started: {session}")
        logger.debug(f"Debug logs: {log_file}")
        return str(log_file)


def setup_logging(**kwargs) -> List[logging.Handler]:
    return ScanLogger.setup_logging(**kwargs)


def debug_mode(session_name: Optional[str] = None, log_root: Optional[Union[str, Path]] = None) -> str:
    """Enable full debug logging for a session."""
    return ScanLogger.setup_debug_logging(session_name, log_root)


def get_logger(name: str) -> logging.Logger:
    """Logger under the scancert namespace."""
    if not name.startswith('scancert'):
        name = f'scancert.{name}'
    return logging.getLogger(name)

"""
Loguru setup for news relay.

One stderr sink for interactive runs and an optional rotating file sink for
`serve`, where runs happen on the scheduler's worker thread.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

from news_relay.config import LoggingConfig


def setup_logger(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    rotation: Optional[str] = None,
    retention: Optional[str] = None,
    format: Optional[str] = None,
    log_config: Optional[LoggingConfig] = None,
) -> None:
    """Replace loguru's default sink with the configured ones.

    Explicit arguments win over the `logging` section; passing `log_file`
    turns the file sink on even when the section leaves it off.
    """
    log_config = log_config or LoggingConfig()
    level = level or log_config.level
    format = format or log_config.format

    _logger.remove()

    if log_config.console_enabled:
        _logger.add(sys.stderr, format=format, level=level, colorize=True, backtrace=True, diagnose=False)

    if log_file or log_config.file_enabled:
        path = Path(log_file or log_config.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(path),
            format=format,
            level=level,
            rotation=rotation or log_config.rotation,
            retention=retention or log_config.retention,
            compression="zip",
            encoding="utf-8",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )


def get_logger(name: Optional[str] = None):
    """Logger bound to a module name, or the shared logger without one."""
    if name:
        return _logger.bind(name=name)
    return _logger


logger = _logger

__all__ = ["setup_logger", "get_logger", "logger"]

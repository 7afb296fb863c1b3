"""
Logging utilities.

Loggers live under the ``pyformula`` namespace. Nothing is printed unless
``setup_logging`` (or ``configure(**{"logging.console": True})``) attaches
a handler.
"""

import logging
import sys
from typing import Optional, Union

from .config import LogLevel, get_config

ROOT_LOGGER = "pyformula"

logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


class PyFormulaLogger:
    """Logger wrapper that appends ``key=value`` context to messages."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def debug(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.INFO):
            self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs):
        self.logger.error(self._format_message(message, **kwargs))

    def _format_message(self, message: str, **kwargs) -> str:
        if kwargs:
            context_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
            return f"{message} | {context_str}"
        return message


_loggers = {}


def get_logger(name: str = ROOT_LOGGER) -> PyFormulaLogger:
    """Get a (cached) logger for a module under the pyformula namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    if name not in _loggers:
        _loggers[name] = PyFormulaLogger(name)
    return _loggers[name]


def setup_logging(
    level: Optional[Union[str, LogLevel]] = None,
    console: Optional[bool] = None,
    format_string: Optional[str] = None,
) -> None:
    """
    Configure the package logger.

    Arguments left as None fall back to the 'logging' section of the
    process-wide configuration.
    """
    config = get_config().logging
    if level is not None:
        config.level = LogLevel(level.upper() if isinstance(level, str) else level)
    if console is not None:
        config.console = console
    if format_string is not None:
        config.format_string = format_string

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, LogLevel(config.level).value))

    for handler in list(root.handlers):
        if getattr(handler, "_pyformula_console", False):
            root.removeHandler(handler)

    if config.console:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(config.format_string))
        handler._pyformula_console = True
        root.addHandler(handler)

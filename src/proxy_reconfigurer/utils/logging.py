"""Logging helpers built on top of Rich."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

Logger = logging.Logger

LOGGER_NAME = "proxy_reconfigurer"

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """Append structured ``extra`` fields to the event name as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}
        if not extras:
            return message
        rendered = " ".join(f"{key}={value}" for key, value in extras.items())
        return f"{message} {rendered}"


def _configure_root_logger(level: str | int) -> logging.Logger:
    """Configure the process-wide logger once."""

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )
    handler.setFormatter(ExtraFormatter("%(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    logging.basicConfig(level=level, handlers=[handler])
    return logging.getLogger(LOGGER_NAME)


_logger: logging.Logger | None = None


def get_logger(level: str | int = logging.INFO) -> logging.Logger:
    """Return the application logger, configuring it on first use.

    ``level`` only matters on the first call; later calls return the already configured logger.
    """

    global _logger
    if _logger is None:
        _logger = _configure_root_logger(level)
    return _logger


__all__ = ["get_logger", "Logger", "ExtraFormatter", "LOGGER_NAME"]

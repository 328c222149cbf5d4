"""Console logging for the ``mailwatch`` logger tree.

Library modules only ever call ``logging.getLogger(__name__)``. Whether the
records reach the console is decided here, once, from
``WatchConfig.logging``.
"""

from __future__ import annotations

import logging

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "mailwatch"

_HANDLER_ATTR = "_mailwatch_handler"


def configure_logging(enabled: bool, *, level: int = logging.INFO) -> logging.Logger:
    """Attach (or detach) the console handler for the package logger.

    Calling this repeatedly is safe; the previously installed handler is
    replaced rather than duplicated.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_ATTR, False):
            logger.removeHandler(handler)

    if enabled:
        handler: logging.Handler = RichHandler(
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%x %X]",
        )
        handler.setFormatter(logging.Formatter("[mailwatch] %(message)s"))
        logger.setLevel(level)
        logger.propagate = False
    else:
        handler = logging.NullHandler()
        logger.propagate = True
    setattr(handler, _HANDLER_ATTR, True)
    logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "ROOT_LOGGER_NAME"]

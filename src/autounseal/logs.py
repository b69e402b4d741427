"""Logging setup for the controller process."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_HANDLER_MARK = "_autounseal_handler"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Configure the ``autounseal`` logger tree.

    Logs go to stdout for the container runtime and, optionally, to a
    file. Calling this again replaces the handlers installed by a
    previous call instead of stacking them.

    Args:
        level: Level name or number.
        log_file: Optional path for a copy of the log.

    Returns:
        logging.Logger: The configured ``autounseal`` logger, to be passed
        to components that take a logger.
    """
    logger = logging.getLogger("autounseal")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARK, True)
        logger.addHandler(handler)

    return logger

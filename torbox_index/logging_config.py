"""Logging setup shared by the app and the upstream client."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_NAME = "torbox_index"


def mask_key(access_key: str) -> str:
    """Return a log-safe form of an access key.

    Examples:
        >>> mask_key("abcdef123456")
        'abcd***'
        >>> mask_key("")
        '<none>'
    """
    if not access_key:
        return "<none>"
    return f"{access_key[:4]}***"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Calling it again only updates the level, so app factories used by tests
    do not stack handlers.
    """
    logger = logging.getLogger("torbox_index")
    logger.setLevel(level.upper())
    if not any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger

"""
Logging setup for the ``visionocr`` namespace.

Usage:
    from visionocr.utils.logging import get_logger
    logger = get_logger("visionocr.pdf_processing.chunker")
    logger.info("[CHUNK] Page %d split into %d chunks", page, count)

Modules call ``get_logger`` at import time, which attaches the stderr
handler at INFO.  Entry points then call ``setup_logging(settings.log_level)``
to apply the configured level.
"""

from __future__ import annotations

import logging
import sys

NAMESPACE = "visionocr"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# Both log one INFO line per HTTP request.
CHATTY_LIBRARIES = ("httpx", "openai")

_handler: logging.Handler | None = None


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _attach_handler() -> logging.Handler:
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        _handler.setLevel(logging.INFO)

        root = logging.getLogger(NAMESPACE)
        root.setLevel(logging.INFO)
        root.addHandler(_handler)
        root.propagate = False
    return _handler


def setup_logging(level: int | str = logging.INFO) -> None:
    """Apply ``level`` to the namespace; safe to call repeatedly."""
    level = _resolve_level(level)
    _attach_handler().setLevel(level)
    logging.getLogger(NAMESPACE).setLevel(level)

    library_level = level if level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    _attach_handler()
    return logging.getLogger(name)

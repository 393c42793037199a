"""
Stage timing helpers.

Usage:
    with Timer() as t:
        chunks = chunk_page(page, cfg)
    pipeline.stage_timings["chunking"] = t.elapsed_s

    @timed("rasterize_pdf")
    def rasterize_pdf(pdf_bytes, ...):
        ...
"""

from __future__ import annotations

import functools
import time
from typing import Any, Callable

from visionocr.utils.logging import get_logger

logger = get_logger("visionocr.timing")


class Timer:
    """Wall-clock timer; logs on exit only when given a label."""

    def __init__(self, label: str = ""):
        self.label = label
        self._start: float = 0.0
        self.elapsed_s: float = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_s * 1000

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: Any) -> None:
        self.elapsed_s = time.perf_counter() - self._start
        if self.label:
            logger.info("%s completed in %.1fms", self.label, self.elapsed_ms)


def timed(label: str | None = None) -> Callable:
    """Log the wall-clock time of each call to a blocking function."""

    def decorator(fn: Callable) -> Callable:
        _label = label or fn.__qualname__

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with Timer(_label):
                return fn(*args, **kwargs)

        return wrapper

    return decorator

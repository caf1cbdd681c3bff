"""
Small shared utilities.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Generator


@contextmanager
def timer(label: str | None = None, logger: logging.Logger | None = None) -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds.

    When both *label* and *logger* are given the elapsed time is also logged
    at INFO level on exit.
    """
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)
        if label and logger is not None:
            logger.info("%s took %d ms", label, result["elapsed_ms"])

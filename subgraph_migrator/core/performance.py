# subgraph_migrator/core/performance.py
"""
Performance-focused logging utilities
"""

import time
import logging
from contextlib import contextmanager
from typing import Generator, Dict, Any

from .logging import log_with_context


@contextmanager
def log_performance(logger: logging.Logger,
                   operation: str,
                   level: int = logging.DEBUG,
                   **context) -> Generator[Dict[str, Any], None, None]:
    """Context manager for performance logging.

    Yields a dict the caller may fill with extra context (e.g. ``rows``);
    the completion record carries it together with ``execution_time``.
    """
    start_time = time.monotonic()
    extra: Dict[str, Any] = {}
    try:
        log_with_context(logger, level, f"Starting {operation}", **context)
        yield extra
        execution_time = time.monotonic() - start_time
        message = f"Completed {operation} in {execution_time:.3f}s"
        rows = extra.get('rows')
        if rows and execution_time > 0:
            message += f" ({rows / execution_time:,.0f} rows/s)"
        log_with_context(logger, level, message,
                         **context, **extra, execution_time=round(execution_time, 3))
    except Exception as e:
        execution_time = time.monotonic() - start_time
        log_with_context(logger, logging.ERROR,
                         f"Failed {operation} after {execution_time:.3f}s: {e}",
                         **context, execution_time=round(execution_time, 3))
        raise

"""Logging decorators to reduce verbose logging code.

Service operations and store queries use these to report their timing
consistently, with a warning when they cross a slowness threshold.
"""

import inspect
import logging
import time
from functools import wraps
from typing import Callable


def log_operation_timing(operation_name: str = None, threshold_ms: int = 100):
    """Decorator to log operation timing with automatic slow operation warnings.

    Args:
        operation_name: Custom operation name (defaults to function name)
        threshold_ms: Warn if operation takes longer than this (milliseconds)

    Usage:
        @log_operation_timing("sync_all", threshold_ms=5000)
        async def sync_all(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        logger = logging.getLogger(func.__module__)
        op_name = operation_name or func.__name__

        def _report(start: float) -> None:
            elapsed_ms = (time.time() - start) * 1000
            if elapsed_ms > threshold_ms:
                logger.warning(f"⏱️  SLOW: {op_name} took {elapsed_ms:.0f}ms (threshold: {threshold_ms}ms)")
            else:
                logger.debug(f"⏱️  {op_name} took {elapsed_ms:.0f}ms")

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.time() - start) * 1000
                logger.error(f"⏱️  FAILED: {op_name} after {elapsed_ms:.0f}ms - {e}")
                raise
            _report(start)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed_ms = (time.time() - start) * 1000
                logger.error(f"⏱️  FAILED: {op_name} after {elapsed_ms:.0f}ms - {e}")
                raise
            _report(start)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


__all__ = [
    "log_operation_timing",
]

"""Shared utilities."""

from storyreel.utils.async_utils import get_io_executor, run_async, run_blocking

__all__ = ["get_io_executor", "run_async", "run_blocking"]

"""Async utilities: sync entry points and the bounded I/O worker pool."""

import asyncio
import functools
import threading
from collections.abc import Callable, Coroutine
from concurrent.futures import ThreadPoolExecutor
from typing import Any, ParamSpec, TypeVar

from storyreel.config import settings

T = TypeVar("T")
P = ParamSpec("P")

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def get_io_executor() -> ThreadPoolExecutor:
    """Return the shared worker pool for blocking I/O, creating it on first use."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=settings.io_max_workers,
                thread_name_prefix="storyreel-io",
            )
        return _executor


async def run_blocking(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a blocking callable on the I/O worker pool and await its result.

    Database sessions, file copies and ffmpeg invocations all go through here
    so that none of them execute on the event loop thread.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_io_executor(), functools.partial(func, *args, **kwargs))


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async coroutine in a sync context.

    Reuses the current event loop if available, otherwise creates a new one.
    The loop is not closed after use because httpx clients created by the
    pipeline adapter stay bound to it between sequential CLI calls.

    Args:
        coro: The coroutine to execute.

    Returns:
        The result of the coroutine.
    """
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)

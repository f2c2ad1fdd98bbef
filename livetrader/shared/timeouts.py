"""
Bounded waiting for blocking collaborator calls.

Storage and venue calls run on a small shared thread pool and the caller
waits at most ``timeout`` seconds for the result. A call that overruns is
abandoned, not interrupted: its worker thread finishes in the background
and the result is discarded.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from livetrader.domain.trading.errors import CallTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="io-call")


def call_with_timeout(
    operation: str,
    fn: Callable[..., T],
    *args: Any,
    timeout: float | None = None,
    **kwargs: Any,
) -> T:
    """Run ``fn(*args, **kwargs)`` and wait at most ``timeout`` seconds.

    Args:
        operation: Short label used in logs and in the raised error.
        fn: The blocking callable.
        timeout: Seconds to wait. ``None`` calls ``fn`` inline.

    Returns:
        Whatever ``fn`` returns.

    Raises:
        CallTimeoutError: If the call did not finish in time.
        Exception: Any exception raised by ``fn`` is re-raised unchanged.
    """
    if timeout is None:
        return fn(*args, **kwargs)

    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning("%s did not complete within %.2fs", operation, timeout)
        raise CallTimeoutError(operation, timeout) from None

"""
Bounded retry for transient failures: a fixed number of retries with a
fixed delay, after which the last error is re-raised to the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)


async def retry_transient(
    func: Callable[[], Awaitable[Any]],
    retry_on: Tuple[Type[BaseException], ...],
    max_retries: int = 3,
    delay_seconds: float = 2.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Await `func()`, retrying up to `max_retries` times on `retry_on` errors.

    Other exceptions propagate on the first attempt.
    """
    retrying = AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    return await retrying(func)

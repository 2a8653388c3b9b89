"""Bounded-timeout wrappers that substitute a fallback value instead of raising.

Every external collaborator call goes through one of these helpers. There are
no retries: a failed or slow call is replaced once by its stage's fallback and
the substitution is reported back to the caller as a short note.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from stock_advisor.core.logger import logger

T = TypeVar("T")


async def call_blocking(func: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """Run a blocking provider call in a worker thread, bounded by ``timeout`` seconds.

    Args:
        func (Callable): The blocking function (requests, feedparser, yfinance, ...).
        timeout (float): Upper bound in seconds.

    Returns:
        The function's return value.

    Raises:
        asyncio.TimeoutError: If the call does not finish within ``timeout``.
    """
    return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=timeout)


async def run_with_fallback(
    stage: str,
    call: Callable[[], Awaitable[T]],
    fallback: Callable[[], T],
    timeout: float,
) -> Tuple[T, Optional[str]]:
    """
    Await ``call()`` under a timeout, substituting ``fallback()`` on timeout or error.

    Cancellation of the surrounding task is never swallowed: ``CancelledError``
    propagates so the whole run aborts atomically.

    Args:
        stage (str): Stage name used in logs and the degradation note.
        call (Callable): Zero-argument coroutine factory for the primary path.
        fallback (Callable): Zero-argument function producing the fallback value.
        timeout (float): Upper bound in seconds for the primary path.

    Returns:
        Tuple[T, Optional[str]]: The value and a degradation note (None when the
        primary path succeeded).
    """
    try:
        value = await asyncio.wait_for(call(), timeout=timeout)
        return value, None
    except asyncio.TimeoutError:
        logger.warning(f"{stage}: TIMEOUT after {timeout:.1f}s, substituting fallback")
        note = f"{stage} timed out after {timeout:.0f}s"
    except Exception as exc:
        logger.error(f"{stage}: INFRA_FAILURE ({type(exc).__name__}: {exc}), substituting fallback")
        note = f"{stage} failed ({type(exc).__name__})"
    return fallback(), note


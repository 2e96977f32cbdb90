"""Timeout utility for the Quiz Lead Processor.

This module provides an awaitable helper that limits the execution time of
coroutines running on the event loop.
"""

import asyncio
from typing import Awaitable, TypeVar

from quiz_lead_processor.errors import ProcessingTimeoutError

T = TypeVar('T')


async def run_with_timeout(awaitable: Awaitable[T], timeout_sec: float, operation: str = "operation") -> T:
    """Await ``awaitable`` and raise ProcessingTimeoutError if it takes longer than timeout_sec.

    Args:
        awaitable: Coroutine or future to await
        timeout_sec: Maximum execution time in seconds
        operation: Name used in the error message

    Returns:
        Result of the awaitable

    Example:
        response = await run_with_timeout(provider.generate_text(prompt), 30, "analysis stage")
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_sec)
    except asyncio.TimeoutError as e:
        raise ProcessingTimeoutError(
            f"{operation} timed out after {timeout_sec} seconds",
            timeout_seconds=timeout_sec,
        ) from e

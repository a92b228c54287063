"""
Retry helpers for upstream data that isn't there yet.

Two shapes:
  - retry_read: fixed attempt count, fixed delay between reads (read-after-write lag)
  - run_with_backoff: fixed delay schedule before each attempt, used by the
    Serious Plan auto-start after the last module completes

Both stop at the first success and give up quietly (logs only) when the
attempts run out. Nothing is re-queued.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from app.utils.logger import logger

T = TypeVar("T")


async def retry_read(
    fetch: Callable[[], Awaitable[Optional[T]]],
    ready: Callable[[T], bool],
    attempts: int,
    delay_seconds: float,
    name: str = "read",
) -> Optional[T]:
    """Call `fetch` up to `attempts` times until `ready(value)`; return the last value"""
    value = None
    for attempt in range(1, attempts + 1):
        value = await fetch()
        if value is not None and ready(value):
            return value
        if attempt < attempts:
            logger.info("retry.read_waiting", extra={"task": name, "attempt": attempt, "delay_seconds": delay_seconds})
            await asyncio.sleep(delay_seconds)
    return value


async def run_with_backoff(
    attempt_fn: Callable[[int], Awaitable[bool]],
    delays: Sequence[float],
    name: str,
) -> bool:
    """
    Wait delays[i], then call attempt_fn(i + 1); stop when it returns True.

    An exception from attempt_fn counts as a failed attempt.
    """
    for attempt, delay in enumerate(delays, start=1):
        await asyncio.sleep(delay)
        try:
            if await attempt_fn(attempt):
                logger.info("retry.succeeded", extra={"task": name, "attempt": attempt})
                return True
        except Exception as e:
            logger.warning("retry.attempt_failed", extra={"task": name, "attempt": attempt, "error": str(e)[:200]},
                           exc_info=True)
        else:
            logger.info("retry.not_ready", extra={"task": name, "attempt": attempt})

    logger.error("retry.gave_up", extra={"task": name, "attempt": len(delays)})
    return False

from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar
import asyncio
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff delay for a zero-based attempt number."""
    return min(base_delay * (2 ** attempt), max_delay)


# Exponential backoff retry
async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    max_retry_after: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``func`` up to ``max_retries`` times.

    Only exceptions in ``retry_on`` are retried. An exception carrying a
    ``retry_after`` attribute waits that long instead of the backoff delay,
    and is raised immediately when the wait exceeds ``max_retry_after``.
    """
    for attempt in range(max_retries):
        try:
            return await func()
        except retry_on as e:
            if attempt == max_retries - 1:
                raise

            retry_after = getattr(e, "retry_after", None)
            if retry_after is not None:
                if max_retry_after is not None and retry_after > max_retry_after:
                    raise
                delay = retry_after
            else:
                delay = backoff_delay(attempt, base_delay, max_delay)

            logger.warning(f"Attempt {attempt + 1}/{max_retries} failed ({type(e).__name__}), "
                           f"retrying in {delay:.2f}s")
            await sleep(delay)

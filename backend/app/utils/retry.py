"""
Capped exponential backoff for eventually-consistent lookups.

The sleep function is injectable so callers (and tests) never wait on a real
clock.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay after failed attempt n (1-indexed) is min(max_delay, base_delay * factor ** (n - 1))."""
    max_attempts: int = 5
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))

    def delays(self) -> List[float]:
        return [self.delay_for(i) for i in range(1, self.max_attempts)]


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: BackoffPolicy = BackoffPolicy(),
    *,
    sleep: SleepFn = asyncio.sleep,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """
    Run ``fn`` until it returns, retrying on ``retry_on`` exceptions.

    The last exception is re-raised once ``policy.max_attempts`` is exhausted.
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt == policy.max_attempts:
                logger.error(f"[Retry] {label} failed after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"[Retry] {label} attempt {attempt}/{policy.max_attempts} failed: {e}; "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    raise RuntimeError("unreachable")

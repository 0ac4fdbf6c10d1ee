"""Retry policy for transient exchange API failures.

Independent of the Request Governor's pacing: the governor bounds how often
calls start, this bounds how a single call recovers from 5xx/network errors.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from nullroute.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BackoffPolicy:
    """Linear backoff: base_delay, base_delay + increment, ...

    With the defaults, a call is attempted 3 times with 1s then 2s between
    attempts. Only TransientError triggers a retry.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    increment: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def no_retry(cls) -> "BackoffPolicy":
        return cls(max_attempts=1)

    def delay_for(self, retry: int) -> float:
        """Delay before the given retry (1 = first retry)."""
        delay = self.base_delay + self.increment * (retry - 1)
        return max(0.0, min(delay, self.max_delay))

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "request",
    ) -> T:
        """Run operation, retrying TransientError until attempts are exhausted."""
        last_error: Optional[TransientError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except TransientError as e:
                last_error = e
                if attempt >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): "
                    f"{e.message}; retrying in {delay:.1f}s"
                )
                await self.sleep(delay)

        logger.error(f"{description} failed after {self.max_attempts} attempt(s): {last_error}")
        raise TransientError(
            last_error.message,
            status_code=last_error.status_code,
            attempts=self.max_attempts,
        )

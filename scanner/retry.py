"""
Retry policy shared by every collaborator call.

One policy object (max attempts, delay, backoff multiplier, per-attempt
timeout) applied uniformly instead of per-call-site retry loops.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TransportError,
    httpx.HTTPStatusError,
)


@dataclass
class RetryPolicy:
    """
    Bounded retry with fixed or exponential delay.

    Attributes:
        max_attempts: Total attempts including the first
        delay: Delay before the first retry (seconds)
        backoff: Delay multiplier per retry (1.0 = fixed delay)
        timeout: Per-attempt timeout (seconds); None disables
        retry_on: Exception types treated as transient
    """

    max_attempts: int = 3
    delay: float = 2.0
    backoff: float = 1.0
    timeout: Optional[float] = 15.0
    retry_on: Tuple[Type[BaseException], ...] = field(default=TRANSIENT_ERRORS)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.delay * (self.backoff ** (attempt - 1))

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = '',
        **kwargs: Any,
    ) -> T:
        """
        Await ``func(*args, **kwargs)`` with retries.

        Non-transient exceptions propagate immediately. After the final
        attempt the last transient exception is re-raised.
        """
        label = description or getattr(func, '__name__', 'call')
        attempts = max(1, self.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                if self.timeout is not None:
                    return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if not _is_retryable_status(e):
                    raise
                if attempt >= attempts:
                    logger.warning(f"{label} failed after {attempts} attempts: {e!r}")
                    raise
                wait = self.delay_for(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{attempts}), "
                    f"retrying in {wait:.1f}s: {e!r}"
                )
                await asyncio.sleep(wait)

        raise RuntimeError(f"{label}: retry loop exited without result")


def _is_retryable_status(error: BaseException) -> bool:
    """HTTP errors retry only on 429 and 5xx; other transient errors always retry."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return True

"""
Bounded retry for model and embedding calls.

Transient failures (timeouts, rate limits, overloaded or unavailable
services) are retried with exponential backoff. Anything else fails on
the first attempt. Exhaustion is always reported as a ProviderError so
callers only have one failure type to handle.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ..errors import MemoriaError, ProviderError

logger = logging.getLogger("memoria.llm.retry")

T = TypeVar("T")

_RETRYABLE_MARKERS = (
    "429",
    "500",
    "502",
    "503",
    "504",
    "rate limit",
    "ratelimit",
    "too many requests",
    "overloaded",
    "unavailable",
    "timeout",
    "timed out",
    "temporarily",
    "connection",
    "resource exhausted",
)


def is_retryable_error(error: BaseException) -> bool:
    """Is this error worth another attempt?"""
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    name = type(error).__name__.lower()
    if "ratelimit" in name or "timeout" in name or "connection" in name:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


@dataclass
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    timeout: float = 30.0  # Per attempt, seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_async(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """
    Run `func` with bounded retries.

    Args:
        operation: Name used in logs and in the raised ProviderError
        func: Zero-argument coroutine factory, called once per attempt
        policy: Retry settings (defaults: 3 attempts, 0.5s doubling, 30s timeout)

    Raises:
        ProviderError: All attempts failed, or the failure was not transient
    """
    policy = policy or RetryPolicy()
    attempts = max(policy.attempts, 1)
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout)
        except MemoriaError:
            # Integrity and validation errors are never transient
            raise
        except Exception as e:
            last_error = e
            if not is_retryable_error(e) or attempt == attempts:
                raise ProviderError(operation, str(e) or type(e).__name__, attempt) from e
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{attempts}): {e}. Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise ProviderError(operation, str(last_error), attempts)

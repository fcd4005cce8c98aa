"""
Bounded retry with per-attempt timeout and exponential backoff.

Every remote call (vector database, embedding API, completion API) goes
through a RetryPolicy so that no call can hang indefinitely.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from .config import Config
from .errors import NotFound, RemoteUnavailable, ValidationError

T = TypeVar("T")

# Errors that describe the request, not the remote service: retrying cannot help.
NON_RETRYABLE: tuple[type[BaseException], ...] = (ValidationError, NotFound)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings for one class of remote calls.

    Attributes:
        max_retries: Total number of attempts (>= 1)
        timeout: Seconds allowed per attempt
        initial_delay: Backoff before the second attempt
        max_delay: Upper bound for any single backoff
    """

    max_retries: int = Config.REMOTE_MAX_RETRIES
    timeout: float = Config.REMOTE_TIMEOUT_SECONDS
    initial_delay: float = Config.REMOTE_RETRY_DELAY
    max_delay: float = Config.REMOTE_RETRY_MAX_DELAY

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    def backoff(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)

    async def call(self, fn: Callable[[], Awaitable[T]], operation: str) -> T:
        """
        Run ``fn`` under the policy.

        Args:
            fn: Zero-argument coroutine factory, invoked once per attempt
            operation: Human-readable name used in logs and errors

        Returns:
            The first successful result

        Raises:
            ValidationError, NotFound: Propagated immediately
            RemoteUnavailable: When all attempts failed or timed out
        """
        last_error: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.wait_for(fn(), timeout=self.timeout)
            except NON_RETRYABLE:
                raise
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    f"{operation} timed out after {self.timeout}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
            except Exception as exc:
                last_error = exc
                logger.warning(f"{operation} failed (attempt {attempt}/{self.max_retries}): {exc}")

            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff(attempt))

        logger.error(f"{operation} retries exhausted")
        raise RemoteUnavailable(operation, self.max_retries, last_error) from last_error


DEFAULT_RETRY_POLICY = RetryPolicy()

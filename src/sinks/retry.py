"""
Retry Logic with Exponential Backoff
Used to establish the store connection at startup; per-event writes never retry
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from pymongo.errors import ConnectionFailure, OperationFailure

from src.config.settings import RetrySettings
from src.sinks.base import TransientStoreError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Retry policy configuration

    Attributes:
        max_attempts: Maximum number of attempts (first try included)
        base_delay: Base delay in seconds for first retry
        max_delay: Maximum delay in seconds
        multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delays
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_ms / 1000,
            max_delay=settings.max_delay_ms / 1000,
            multiplier=settings.backoff_multiplier,
            jitter=settings.jitter,
        )


def calculate_backoff(
    attempt: int,
    base_delay: float,
    multiplier: float,
    max_delay: Optional[float] = None,
    jitter: bool = True,
) -> float:
    """
    Calculate backoff delay for retry attempt

    Args:
        attempt: Retry attempt number (1-indexed)
        base_delay: Base delay in seconds
        multiplier: Exponential multiplier
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = base_delay * (multiplier ** (attempt - 1))

    if max_delay is not None:
        delay = min(delay, max_delay)

    # +/-25%
    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify error as retryable or permanent

    Args:
        error: Exception to classify

    Returns:
        True if error is retryable, False if permanent
    """
    if isinstance(error, (ConnectionFailure, TransientStoreError, ConnectionError, TimeoutError)):
        return True

    if isinstance(error, OperationFailure):
        # Authentication and authorization failures will not heal by waiting
        if error.code in (13, 18):
            return False
        return error.has_error_label("RetryableWriteError") or error.has_error_label(
            "TransientTransactionError"
        )

    return False


async def retry_with_policy(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str = "operation",
) -> T:
    """
    Execute an async callable with retry policy

    Args:
        func: Async callable to execute
        policy: Retry policy
        operation: Name used in log messages

    Returns:
        Function result

    Raises:
        Last exception if all retries fail, or the first permanent error
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func()

        except Exception as e:
            if not is_retryable_error(e):
                logger.error("Permanent error, not retrying", operation=operation, error=str(e))
                raise

            if attempt >= policy.max_attempts:
                logger.error(
                    "Max retry attempts reached",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = calculate_backoff(
                attempt=attempt,
                base_delay=policy.base_delay,
                multiplier=policy.multiplier,
                max_delay=policy.max_delay,
                jitter=policy.jitter,
            )

            logger.warning(
                "Retrying after error",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            )

            await asyncio.sleep(delay)

    raise RuntimeError("retry_with_policy requires max_attempts >= 1")

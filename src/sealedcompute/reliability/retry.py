"""
Bounded Retry Policy.

Provides reusable retry logic for transient-unavailability calls against
the execution substrate:
- Fixed or exponential backoff with optional jitter
- Configurable retry conditions
- "Not yet available" results retried like transient failures
- Attempt accounting surfaced on exhaustion

Usage:
    config = RetryConfig.fixed(max_attempts=10, delay=0.5)

    key = await async_retry(
        substrate.get_cluster_public_key,
        context,
        config=config,
        accept=bool,
        operation="fetch_cluster_public_key",
    )
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..errors import RetryExhaustedError, SubstrateUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    # Total number of attempts, including the first one
    max_attempts: int = 3

    # Base delay between attempts (seconds)
    base_delay: float = 1.0

    # Maximum delay between attempts (seconds)
    max_delay: float = 60.0

    # Exponential base for backoff calculation (1.0 = fixed delay)
    exponential_base: float = 2.0

    # Add random jitter to prevent thundering herd
    jitter: bool = True

    # Jitter factor (0.0 to 1.0)
    jitter_factor: float = 0.25

    # Exceptions to retry on
    retry_exceptions: Tuple[Type[BaseException], ...] = (
        SubstrateUnavailableError,
        ConnectionError,
        TimeoutError,
    )

    # Log retry attempts
    log_retries: bool = True

    # Callback on each retry: (attempt, exception or None, delay)
    on_retry: Optional[Callable[[int, Optional[BaseException], float], None]] = None

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> "RetryConfig":
        """Fixed inter-attempt delay, no jitter."""
        return cls(
            max_attempts=max_attempts,
            base_delay=delay,
            max_delay=delay,
            exponential_base=1.0,
            jitter=False,
        )

    @classmethod
    def for_key_fetch(cls) -> "RetryConfig":
        """Cluster keys are published asynchronously; poll at a steady rate."""
        return cls.fixed(max_attempts=10, delay=0.5)

    @classmethod
    def for_network(cls) -> "RetryConfig":
        """Configuration optimized for network operations."""
        return cls(
            max_attempts=5,
            base_delay=0.5,
            max_delay=30.0,
            exponential_base=2.0,
            jitter=True,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay after a failed attempt.

    Uses delay = base * (exponential_base ^ attempt), capped at max_delay,
    with optional jitter.

    Args:
        attempt: Failed attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_range = delay * config.jitter_factor
        delay = delay + random.uniform(-jitter_range, jitter_range)
        delay = max(0.0, delay)

    return delay


def should_retry(exception: BaseException, config: RetryConfig) -> bool:
    """Determine if an exception should trigger a retry."""
    return isinstance(exception, config.retry_exceptions)


async def async_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    accept: Optional[Callable[[T], bool]] = None,
    operation: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with bounded retries.

    Each attempt is independent. An attempt fails when it raises a retryable
    exception or when its result is rejected by ``accept``.

    Args:
        func: Async function to execute
        *args: Positional arguments
        config: Retry configuration
        accept: Predicate a result must satisfy to end the loop
        operation: Name for logging and error messages
        sleep: Awaitable sleep used between attempts
        **kwargs: Keyword arguments

    Returns:
        The first accepted result

    Raises:
        RetryExhaustedError: If no attempt produced an accepted result
    """
    config = config or RetryConfig()
    name = operation or getattr(func, "__name__", "operation")
    last_exception: Optional[BaseException] = None

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e, config):
                raise
            last_exception = e
            reason = f"{type(e).__name__}: {e}"
        else:
            if accept is None or accept(result):
                if config.log_retries and attempt > 0:
                    logger.info(
                        f"{name} succeeded on attempt {attempt + 1}",
                        extra={"operation": name, "attempt": attempt + 1},
                    )
                return result
            last_exception = None
            reason = "result not yet available"

        if attempt + 1 >= config.max_attempts:
            break

        delay = calculate_delay(attempt, config)

        if config.log_retries:
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} for {name} failed "
                f"({reason}). Waiting {delay:.2f}s",
                extra={
                    "operation": name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "delay": delay,
                },
            )

        if config.on_retry:
            try:
                config.on_retry(attempt + 1, last_exception, delay)
            except Exception as callback_error:
                logger.warning(f"Retry callback failed: {callback_error}")

        await sleep(delay)

    raise RetryExhaustedError(
        f"All {config.max_attempts} attempts failed for {name}",
        attempts=config.max_attempts,
        last_exception=last_exception,
    )

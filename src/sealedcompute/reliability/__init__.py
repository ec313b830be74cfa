"""
SealedCompute Reliability Module.

Provides the reliability patterns the client protocol relies on:
- Bounded retry policy for transient substrate unavailability
- Deadline budgets shared across polls and event waits

Usage:
    from sealedcompute.reliability import (
        RetryConfig,
        async_retry,
        Deadline,
    )
"""

from ..errors import RetryExhaustedError
from .retry import RetryConfig, async_retry, calculate_delay
from .timeout import Deadline, DeadlineExceeded

__all__ = [
    # Retry
    "RetryConfig",
    "RetryExhaustedError",
    "async_retry",
    "calculate_delay",
    # Deadline
    "Deadline",
    "DeadlineExceeded",
]

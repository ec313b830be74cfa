"""
Deadline Handling Utilities.

A Deadline is a shared time budget for an operation made of several
awaits (polls, event waits). Sub-operations draw their timeout from the
remaining budget, so the whole chain stops at the caller's limit: not
earlier, and never indefinitely.

Usage:
    deadline = Deadline(30.0)
    while not deadline.expired:
        await asyncio.sleep(min(poll_interval, deadline.remaining))

    result = await deadline.wait_for(future)
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class DeadlineExceeded(Exception):
    """Raised when a Deadline's budget is exhausted."""

    def __init__(self, timeout: float, elapsed: float):
        self.timeout = timeout
        self.elapsed = elapsed
        super().__init__(f"Deadline of {timeout}s exceeded after {elapsed:.2f}s")


class Deadline:
    """
    Monotonic time budget.

    Uses the running event loop's clock when available so it agrees with
    asyncio's own timers.
    """

    def __init__(
        self,
        total_timeout: float,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize deadline.

        Args:
            total_timeout: Total budget in seconds
            clock: Monotonic clock (defaults to the event loop clock)
        """
        if total_timeout < 0:
            raise ValueError("total_timeout must be non-negative")
        self.total_timeout = total_timeout
        self._clock = clock or _default_clock()
        self._start_time = self._clock()

    @property
    def elapsed(self) -> float:
        """Get elapsed time since the deadline was created."""
        return self._clock() - self._start_time

    @property
    def remaining(self) -> float:
        """Get remaining time in the budget."""
        return max(0.0, self.total_timeout - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.elapsed >= self.total_timeout

    def check(self) -> None:
        """
        Check if the budget is exhausted.

        Raises:
            DeadlineExceeded: If budget exhausted
        """
        if self.expired:
            raise DeadlineExceeded(self.total_timeout, self.elapsed)

    async def wait_for(self, awaitable: Awaitable[T]) -> T:
        """
        Await within the remaining budget.

        Keeps waiting across early wakeups of the loop timer so the
        operation never ends before the full budget has elapsed.

        Raises:
            DeadlineExceeded: If the budget runs out first
        """
        task = asyncio.ensure_future(awaitable)
        try:
            while True:
                if task.done():
                    return task.result()
                if self.expired:
                    raise DeadlineExceeded(self.total_timeout, self.elapsed)
                await asyncio.wait({task}, timeout=self.remaining)
        finally:
            if not task.done():
                task.cancel()


def _default_clock() -> Callable[[], float]:
    try:
        return asyncio.get_running_loop().time
    except RuntimeError:
        return time.monotonic

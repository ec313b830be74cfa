"""
Finalization Waiter

Cooperatively waits for the substrate to report that a request reached a
terminal state. Transient substrate unavailability is retried by polling
again; nothing is retried past the caller's timeout.
"""

import asyncio
import logging

from ..errors import FinalizationTimeoutError
from ..reliability.timeout import Deadline, DeadlineExceeded
from .models import FinalizationRecord
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5


class FinalizationWaiter:
    """
    Polls the substrate for a request's finalization record.

    Waiting is idempotent: a caller that timed out may wait again on the
    same correlation id. Abandoning a wait (task cancellation) is local
    only; the cluster may still finalize the request later.
    """

    def __init__(
        self,
        substrate: ExecutionSubstrate,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._substrate = substrate
        self._poll_interval = poll_interval

    async def await_finalization(
        self,
        correlation_id: bytes,
        timeout: float,
    ) -> FinalizationRecord:
        """
        Wait until the request is FINALIZED or FAILED.

        Args:
            correlation_id: Request to wait for
            timeout: Total wait budget in seconds

        Returns:
            A terminal FinalizationRecord (FINALIZED or FAILED)

        Raises:
            FinalizationTimeoutError: If no terminal record appears in time
        """
        deadline = Deadline(timeout)
        polls = 0
        transient_failures = 0

        while not deadline.expired:
            polls += 1
            try:
                record = await deadline.wait_for(
                    self._substrate.get_finalization(correlation_id)
                )
            except DeadlineExceeded:
                break
            except ConnectionError as e:
                transient_failures += 1
                logger.warning(
                    f"Finalization poll {polls} for {correlation_id.hex()} failed: {e}",
                    extra={
                        "correlation_id": correlation_id.hex(),
                        "poll": polls,
                        "remaining": deadline.remaining,
                    },
                )
            else:
                if record is not None and record.is_terminal:
                    logger.info(
                        f"Request {correlation_id.hex()} {record.status.value} "
                        f"after {deadline.elapsed:.2f}s ({polls} polls)"
                    )
                    return record

            if deadline.expired:
                break
            await asyncio.sleep(min(self._poll_interval, deadline.remaining))

        logger.warning(
            f"Finalization wait for {correlation_id.hex()} timed out",
            extra={
                "correlation_id": correlation_id.hex(),
                "polls": polls,
                "transient_failures": transient_failures,
                "timeout": timeout,
            },
        )
        raise FinalizationTimeoutError(
            correlation_id,
            timeout=timeout,
            elapsed=deadline.elapsed,
            attempts=polls,
        )

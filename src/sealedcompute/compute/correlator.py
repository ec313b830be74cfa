"""
Result Correlator

Matches asynchronous completion notifications to pending requests and
decrypts their payloads. The cluster may finalize requests in any order,
so matching relies solely on the correlation id; completion order is
never assumed.

When a substrate's notifications omit the correlation id, the correlator
falls back to the submitter identity. A tagged result is matched only if
its tag verifies under the request's correlation id. Anything else (an
untagged failure report, say) is matched only while exactly one request
from that submitter is outstanding. Requests abandoned before their result
arrived stay outstanding until the substrate shows them finalized, so a
late result is never taken for a newer request's.
"""

import logging
from typing import Dict, List, Optional, Set

from ..confidential.session import ConfidentialSession
from ..errors import ComputationFailedError, FinalizationTimeoutError
from ..reliability.timeout import Deadline, DeadlineExceeded
from .events import OneShotSubscription
from .models import CompletionNotification, ComputationDefinition, FinalizationStatus
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)


class ResultCorrelator:
    """
    Registers per-request one-shot listeners and decrypts matched results.

    Usage:
        async with correlator.expect(definition, cid, "alice", session) as subscription:
            await submitter.submit(..., correlation_id=cid)
            outputs = await correlator.await_result(
                subscription, session, definition, cid, Deadline(60.0)
            )
    """

    def __init__(self, substrate: ExecutionSubstrate):
        self._substrate = substrate
        self._pending_by_submitter: Dict[str, int] = {}
        self._orphans: Dict[str, Set[bytes]] = {}

    def pending_for(self, submitter: str) -> int:
        """Open subscriptions plus abandoned, unfinalized requests."""
        return self._pending_by_submitter.get(submitter, 0) + len(
            self._orphans.get(submitter, ())
        )

    def orphans_for(self, submitter: str) -> Set[bytes]:
        return set(self._orphans.get(submitter, ()))

    def matches(
        self,
        notification: CompletionNotification,
        correlation_id: bytes,
        submitter: Optional[str],
        session: Optional[ConfidentialSession] = None,
    ) -> bool:
        """Decide whether ``notification`` belongs to the given request."""
        if notification.correlation_id is not None:
            return notification.correlation_id == correlation_id

        if submitter is None or notification.submitter != submitter:
            return False

        tagged = notification.tag is not None and notification.result_nonce is not None
        if session is not None and tagged:
            if session.outputs_match(notification.sealed_outputs(), correlation_id):
                return True
            logger.debug(
                f"Notification {notification.event_name} for {submitter} is sealed "
                f"for another request than {correlation_id.hex()}"
            )
            return False

        pending = self.pending_for(submitter)
        if pending != 1:
            logger.warning(
                f"Notification {notification.event_name} without correlation id is "
                f"ambiguous for submitter {submitter} ({pending} pending)",
                extra={"event": notification.event_name, "submitter": submitter},
            )
            return False
        return True

    def expect(
        self,
        definition: ComputationDefinition,
        correlation_id: bytes,
        submitter: Optional[str] = None,
        session: Optional[ConfidentialSession] = None,
    ) -> "_CorrelatedSubscription":
        """
        Build a scoped subscription for one request's result.

        Enter it before submitting so an early notification is not missed.
        With ``session`` given, tagged results lacking a correlation id are
        matched by verifying their tag.
        """
        return _CorrelatedSubscription(self, definition, correlation_id, submitter, session)

    async def await_result(
        self,
        subscription: OneShotSubscription,
        session: ConfidentialSession,
        definition: ComputationDefinition,
        correlation_id: bytes,
        deadline: Deadline,
    ) -> List[int]:
        """
        Wait for the matching notification and decrypt its outputs.

        Raises:
            FinalizationTimeoutError: If no matching notification arrives
            ComputationFailedError: If the cluster reported failure
            DecryptionMismatchError: If the payload does not open under the
                session and this request's correlation id
        """
        try:
            notification = await subscription.wait(deadline)
        except DeadlineExceeded as e:
            raise FinalizationTimeoutError(
                correlation_id,
                timeout=deadline.total_timeout,
                elapsed=e.elapsed,
                stage="result notification",
            ) from e
        finally:
            await subscription.close()

        if notification.status == FinalizationStatus.FAILED:
            raise ComputationFailedError(
                correlation_id, notification.reason or "computation aborted"
            )

        outputs = session.open_outputs(
            notification.sealed_outputs(),
            bit_width=definition.output_bit_width,
            associated_data=correlation_id,
        )
        logger.info(
            f"Correlated {definition.name} result {correlation_id.hex()} "
            f"({len(outputs)} outputs)"
        )
        return outputs

    def _track(self, submitter: Optional[str], delta: int) -> None:
        if submitter is None:
            return
        count = self._pending_by_submitter.get(submitter, 0) + delta
        if count > 0:
            self._pending_by_submitter[submitter] = count
        else:
            self._pending_by_submitter.pop(submitter, None)

    async def _is_unfinalized(self, correlation_id: bytes) -> bool:
        try:
            record = await self._substrate.get_finalization(correlation_id)
        except ConnectionError as e:
            logger.debug(f"Finalization lookup for {correlation_id.hex()} failed: {e}")
            return True
        return record is not None and not record.is_terminal

    async def _abandon(self, submitter: Optional[str], correlation_id: bytes) -> None:
        if submitter is None or not await self._is_unfinalized(correlation_id):
            return
        self._orphans.setdefault(submitter, set()).add(correlation_id)
        logger.info(
            f"Request {correlation_id.hex()} abandoned before its result; "
            f"still counted for submitter {submitter} until it finalizes",
            extra={"correlation_id": correlation_id.hex(), "submitter": submitter},
        )

    async def _settle(self, submitter: Optional[str]) -> None:
        orphans = self._orphans.get(submitter) if submitter is not None else None
        if not orphans:
            return
        for correlation_id in list(orphans):
            if not await self._is_unfinalized(correlation_id):
                orphans.discard(correlation_id)
        if not orphans:
            self._orphans.pop(submitter, None)


class _CorrelatedSubscription(OneShotSubscription):
    """OneShotSubscription bound to one correlation id, counted while outstanding."""

    def __init__(
        self,
        correlator: ResultCorrelator,
        definition: ComputationDefinition,
        correlation_id: bytes,
        submitter: Optional[str],
        session: Optional[ConfidentialSession] = None,
    ):
        super().__init__(
            correlator._substrate,
            definition.event_names,
            lambda n: correlator.matches(n, correlation_id, submitter, session),
            name=f"{definition.name}/{correlation_id.hex()}",
        )
        self._correlator = correlator
        self._correlation_id = correlation_id
        self._submitter = submitter
        self._tracked = False
        self._owns_request = True

    def forfeit(self) -> None:
        """The correlation id was never ours (collision); do not count it once closed."""
        self._owns_request = False

    async def open(self) -> None:
        await self._correlator._settle(self._submitter)
        self._correlator._track(self._submitter, +1)
        self._tracked = True
        await super().open()

    async def close(self) -> None:
        tracked, self._tracked = self._tracked, False
        try:
            await super().close()
        finally:
            if tracked:
                self._correlator._track(self._submitter, -1)
                if self._owns_request and not self.resolved:
                    await self._correlator._abandon(self._submitter, self._correlation_id)

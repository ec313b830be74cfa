"""
Confidential Compute Client.

Composes the protocol components into the end-to-end flow:

    1. ensure the computation definition is active
    2. open (once) a confidential session against the cluster key
    3. register a result listener, then submit the sealed request
    4. wait for finalization and the matching result notification
    5. decrypt and return the outputs

Usage:
    async with ConfidentialComputeClient(substrate) as client:
        outputs = await client.run("compute_swap", [amount, min_out], "alice")
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .compute.correlator import ResultCorrelator
from .compute.definitions import ComputationDefinitionRegistry
from .compute.finalization import FinalizationWaiter
from .compute.models import (
    ComputationDefinition,
    FinalizationStatus,
    RequestStatus,
    new_correlation_id,
)
from .compute.submitter import RequestSubmitter
from .compute.substrate import ExecutionSubstrate
from .confidential.cipher import DEFAULT_BIT_WIDTH
from .confidential.session import ConfidentialSession, KeyExchangeSession
from .config import SealedComputeConfig
from .errors import ComputationFailedError, DuplicateCorrelationError
from .reliability.timeout import Deadline

logger = logging.getLogger(__name__)


class ConfidentialComputeClient:
    """
    High-level client for confidential computations on one substrate.

    One session (and so one ephemeral key pair) is shared by every request
    the client submits; each request still draws its own nonce and
    correlation id.
    """

    def __init__(
        self,
        substrate: ExecutionSubstrate,
        config: Optional[SealedComputeConfig] = None,
        id_factory: Callable[[], bytes] = new_correlation_id,
    ):
        self.config = config or SealedComputeConfig()
        self._substrate = substrate
        self._id_factory = id_factory

        self.key_exchange = KeyExchangeSession(
            substrate, retry_config=self.config.key_fetch.retry_config()
        )
        self.definitions = ComputationDefinitionRegistry(substrate)
        self.waiter = FinalizationWaiter(
            substrate, poll_interval=self.config.finalization.poll_interval
        )
        self.correlator = ResultCorrelator(substrate)

        self._session: Optional[ConfidentialSession] = None
        self._submitter: Optional[RequestSubmitter] = None
        self._session_lock = asyncio.Lock()

    @property
    def session(self) -> Optional[ConfidentialSession]:
        return self._session

    @property
    def submitter(self) -> Optional[RequestSubmitter]:
        return self._submitter

    async def __aenter__(self) -> "ConfidentialComputeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    async def connect(self) -> ConfidentialSession:
        """Open the confidential session if it is not open yet."""
        if self._session is not None:
            return self._session
        async with self._session_lock:
            if self._session is None:
                session = await self.key_exchange.open_session(self.config.cluster_context)
                self._submitter = RequestSubmitter(
                    self._substrate,
                    session,
                    max_in_flight=self.config.submission.max_in_flight,
                    id_factory=self._id_factory,
                )
                self._session = session
        return self._session

    def close(self) -> None:
        """Destroy the session. A later run() opens a fresh one."""
        if self._session is None:
            return
        if self._submitter is not None and self._submitter.in_flight_count:
            logger.warning(
                f"Closing client with {self._submitter.in_flight_count} requests in flight"
            )
        self._session.destroy()
        self._session = None
        self._submitter = None

    async def run(
        self,
        kind: str,
        inputs: Sequence[int],
        submitter_identity: str,
        *,
        upload_program: bool = False,
        program_body: Optional[bytes] = None,
        timeout: Optional[float] = None,
        input_bit_width: int = DEFAULT_BIT_WIDTH,
        output_bit_width: int = DEFAULT_BIT_WIDTH,
    ) -> List[int]:
        """
        Run one confidential computation end to end.

        Args:
            kind: Computation definition name
            inputs: Unsigned integer inputs
            submitter_identity: Identity recorded with the request
            upload_program: Activate by uploading ``program_body``
            program_body: Precompiled program for upload activation
            timeout: Total budget for finalization and result delivery
            input_bit_width: Width bound for each input
            output_bit_width: Width bound for each output

        Returns:
            Decrypted outputs, in order

        Raises:
            KeyUnavailableError: Cluster key never published
            SubmissionRejectedError: Substrate refused the request
            DuplicateCorrelationError: Collisions on every regenerated id
            FinalizationTimeoutError: No outcome within ``timeout``
            ComputationFailedError: The computation aborted
            DecryptionMismatchError: Result does not open under the session
        """
        definition = ComputationDefinition(
            kind, input_bit_width=input_bit_width, output_bit_width=output_bit_width
        )
        await self.definitions.ensure_active(
            kind, upload_program=upload_program, program_body=program_body
        )
        session = await self.connect()
        submitter = self._submitter

        deadline = Deadline(timeout if timeout is not None else self.config.finalization.timeout)
        max_attempts = self.config.submission.max_correlation_attempts

        correlation_id = b""
        for attempt in range(1, max_attempts + 1):
            correlation_id = submitter.new_correlation_id()
            async with self.correlator.expect(
                definition, correlation_id, submitter_identity, session
            ) as subscription:
                try:
                    await submitter.submit(
                        kind,
                        inputs,
                        submitter_identity,
                        correlation_id=correlation_id,
                        bit_width=definition.input_bit_width,
                    )
                except DuplicateCorrelationError:
                    subscription.forfeit()
                    logger.warning(
                        f"Correlation id {correlation_id.hex()} collided "
                        f"(attempt {attempt}/{max_attempts}), regenerating",
                        extra={"kind": kind, "attempt": attempt},
                    )
                    continue

                # a timed out request is released as still computing
                status = RequestStatus.COMPUTING
                try:
                    record = await self.waiter.await_finalization(
                        correlation_id, deadline.remaining
                    )
                    if record.status == FinalizationStatus.FAILED:
                        status = RequestStatus.FAILED
                        raise ComputationFailedError(
                            correlation_id, record.reason or "computation aborted"
                        )
                    outputs = await self.correlator.await_result(
                        subscription, session, definition, correlation_id, deadline
                    )
                    status = RequestStatus.COMPUTED
                    return outputs
                finally:
                    submitter.release(correlation_id, status)

        raise DuplicateCorrelationError(correlation_id, attempts=max_attempts)

    async def run_many(
        self,
        requests: Sequence[Tuple[str, Sequence[int], str]],
        timeout: Optional[float] = None,
    ) -> List[List[int]]:
        """
        Run several computations concurrently.

        Results are returned in request order regardless of the order in
        which the cluster finalizes them. The first failure is raised.
        """
        await self.connect()
        return list(
            await asyncio.gather(
                *(
                    self.run(kind, inputs, identity, timeout=timeout)
                    for kind, inputs, identity in requests
                )
            )
        )

"""
Request Submitter

Builds and submits confidential computation requests. Each request gets a
fresh correlation id and a fresh nonce; all of its inputs are sealed under
that one nonce and sent with the client's ephemeral public key as a single
atomic unit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..confidential.cipher import DEFAULT_BIT_WIDTH
from ..confidential.session import ConfidentialSession
from ..errors import DuplicateCorrelationError, SubmissionRejectedError
from .models import (
    CORRELATION_ID_SIZE,
    ComputationRequest,
    RequestStatus,
    SubmissionReceipt,
    new_correlation_id,
)
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)


@dataclass
class InFlightRequest:
    """Tracking entry for a submitted request that has not been released."""
    request: ComputationRequest
    receipt: SubmissionReceipt
    status: RequestStatus = RequestStatus.COMPUTING
    created_at: float = field(default_factory=time.time)


class RequestSubmitter:
    """
    Submits sealed requests and holds one in-flight slot per request.

    A slot is taken on submission and returned by release(), normally
    once the request is finalized or abandoned.
    """

    def __init__(
        self,
        substrate: ExecutionSubstrate,
        session: ConfidentialSession,
        max_in_flight: int = 64,
        id_factory: Callable[[], bytes] = new_correlation_id,
    ):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self._substrate = substrate
        self._session = session
        self._id_factory = id_factory
        self._slots = asyncio.Semaphore(max_in_flight)
        self._in_flight: Dict[bytes, InFlightRequest] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def in_flight(self) -> List[InFlightRequest]:
        return list(self._in_flight.values())

    def get(self, correlation_id: bytes) -> Optional[InFlightRequest]:
        return self._in_flight.get(correlation_id)

    def new_correlation_id(self) -> bytes:
        correlation_id = self._id_factory()
        if len(correlation_id) != CORRELATION_ID_SIZE:
            raise ValueError(f"Correlation ids must be {CORRELATION_ID_SIZE} bytes")
        return correlation_id

    def build_request(
        self,
        kind: str,
        plaintext_inputs: Sequence[int],
        submitter_identity: str,
        correlation_id: bytes,
        bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
    ) -> ComputationRequest:
        """Seal the inputs under a fresh nonce, bound to the correlation id."""
        sealed = self._session.seal_inputs(
            plaintext_inputs, bit_width=bit_width, associated_data=correlation_id
        )
        return ComputationRequest(
            correlation_id=correlation_id,
            kind=kind,
            ephemeral_public_key=self._session.public_key_bytes,
            nonce=sealed.nonce,
            ciphertext_fields=sealed.blocks,
            submitter=submitter_identity,
            tag=sealed.tag,
        )

    async def submit(
        self,
        kind: str,
        plaintext_inputs: Sequence[int],
        submitter_identity: str,
        correlation_id: Optional[bytes] = None,
        bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
    ) -> bytes:
        """
        Submit a confidential computation request.

        Args:
            kind: Computation definition name
            plaintext_inputs: Unsigned integer inputs
            submitter_identity: Opaque identity passed through to the substrate
            correlation_id: Pre-generated id (e.g. when a result listener
                was registered first); generated when omitted
            bit_width: Width bound for each input

        Returns:
            The request's correlation id

        Raises:
            DuplicateCorrelationError: On id collision; regenerate and resubmit
            SubmissionRejectedError: On substrate-side validation failure
        """
        if not plaintext_inputs:
            raise SubmissionRejectedError(f"Request for {kind!r} has no inputs")
        correlation_id = correlation_id or self.new_correlation_id()
        if correlation_id in self._in_flight:
            raise DuplicateCorrelationError(correlation_id)

        request = self.build_request(
            kind, plaintext_inputs, submitter_identity, correlation_id, bit_width
        )

        await self._slots.acquire()
        try:
            receipt = await self._substrate.submit_request(request)
        except BaseException:
            self._slots.release()
            raise

        self._in_flight[correlation_id] = InFlightRequest(request=request, receipt=receipt)
        logger.info(
            f"Submitted {kind} request {correlation_id.hex()} "
            f"({len(request.ciphertext_fields)} fields, in flight: {len(self._in_flight)})",
            extra={"kind": kind, "correlation_id": correlation_id.hex()},
        )
        return correlation_id

    def mark(self, correlation_id: bytes, status: RequestStatus) -> None:
        entry = self._in_flight.get(correlation_id)
        if entry is not None:
            entry.status = status

    def release(
        self,
        correlation_id: bytes,
        status: Optional[RequestStatus] = None,
    ) -> Optional[InFlightRequest]:
        """Return the request's in-flight slot. Unknown ids are ignored."""
        entry = self._in_flight.pop(correlation_id, None)
        if entry is None:
            return None
        if status is not None:
            entry.status = status
        self._slots.release()
        return entry

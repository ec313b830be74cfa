"""
Local Execution Substrate

In-process stand-in for the execution cluster, used for tests, local
development and the CLI demo. It holds its own X25519 key, decrypts
request inputs, runs a registered handler, re-encrypts outputs under a
fresh cluster nonce and finalizes asynchronously.

Fault injection:
    key_publish_after     key queries answered with None before publishing
    unavailable_polls     upcoming finalization polls that raise
                          SubstrateUnavailableError
    auto_finalize=False   requests stay pending until finalize() is called,
                          so tests control completion order
    drop_notifications    finalize without emitting anything
    emit_correlation_ids  False emits notifications carrying only the
                          submitter, like substrates that cannot filter
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..confidential.cipher import DEFAULT_BIT_WIDTH, open_fields, seal_fields
from ..confidential.nonce import NONCE_SIZE
from ..confidential.session import EphemeralKeyPair, derive_shared_secret
from ..errors import (
    DecryptionMismatchError,
    DefinitionExistsError,
    DuplicateCorrelationError,
    InvalidPeerKeyError,
    SubmissionRejectedError,
    SubstrateUnavailableError,
)
from .models import (
    CompletionNotification,
    ComputationRequest,
    DefinitionState,
    FinalizationRecord,
    FinalizationStatus,
    SubmissionReceipt,
    comp_def_offset,
)
from .substrate import ExecutionSubstrate, NotificationCallback

logger = logging.getLogger(__name__)

ComputationHandler = Callable[[List[int]], Sequence[int]]


class ComputationAborted(Exception):
    """Raised by a handler when the confidential computation rejects its inputs."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def compute_swap(inputs: List[int]) -> Tuple[int, int]:
    """
    Reference swap circuit.

    Takes (amount, min_amount) and reports no execution, releasing
    min_amount for withdrawal.
    """
    if len(inputs) != 2:
        raise ComputationAborted(f"compute_swap expects 2 inputs, got {len(inputs)}")
    amount, min_amount = inputs
    if amount == 0:
        raise ComputationAborted("Invalid Amount")
    return 0, min_amount


@dataclass
class _DefinitionEntry:
    name: str
    state: DefinitionState
    program: Optional[bytes] = None


class LocalExecutionSubstrate(ExecutionSubstrate):
    """
    In-memory execution cluster.

    Usage:
        substrate = LocalExecutionSubstrate()
        substrate.register_handler("compute_swap", compute_swap)
        client = ConfidentialComputeClient(substrate)
        outputs = await client.run("compute_swap", [amount, min_out], "alice")
    """

    def __init__(
        self,
        *,
        key_publish_after: int = 0,
        finalize_delay: float = 0.0,
        auto_finalize: bool = True,
        drop_notifications: bool = False,
        emit_correlation_ids: bool = True,
        output_bit_width: int = DEFAULT_BIT_WIDTH,
    ):
        self._private_key = x25519.X25519PrivateKey.generate()
        self._cluster = EphemeralKeyPair(
            private_key=self._private_key,
            public_key=self._private_key.public_key(),
        )
        self.key_publish_after = key_publish_after
        self.finalize_delay = finalize_delay
        self.auto_finalize = auto_finalize
        self.drop_notifications = drop_notifications
        self.emit_correlation_ids = emit_correlation_ids
        self.output_bit_width = output_bit_width

        self.unavailable_polls = 0
        self.rejected_submitters: Set[str] = set()

        self.key_queries = 0
        self.finalization_polls = 0

        self._handlers: Dict[str, ComputationHandler] = {}
        self._definitions: Dict[int, _DefinitionEntry] = {}
        self._requests: Dict[bytes, ComputationRequest] = {}
        self._records: Dict[bytes, FinalizationRecord] = {}
        self._listeners: Dict[int, Tuple[str, NotificationCallback]] = {}
        self._next_listener_id = 1
        self._tasks: Set[asyncio.Task] = set()

        self.init_calls = 0
        self.finalize_calls = 0
        self.upload_calls = 0

    # -------------------------------------------------------------------------
    # INSPECTION
    # -------------------------------------------------------------------------

    @property
    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def register_handler(self, kind: str, handler: ComputationHandler) -> None:
        self._handlers[kind] = handler

    def pending(self) -> List[bytes]:
        """Correlation ids still awaiting finalization, in submission order."""
        return [
            cid for cid, record in self._records.items()
            if record.status == FinalizationStatus.PENDING
        ]

    def request(self, correlation_id: bytes) -> Optional[ComputationRequest]:
        return self._requests.get(correlation_id)

    def submitted(self) -> List[ComputationRequest]:
        """Every accepted request, in submission order."""
        return list(self._requests.values())

    # -------------------------------------------------------------------------
    # KEYS AND DEFINITIONS
    # -------------------------------------------------------------------------

    async def get_cluster_public_key(self, context: str) -> Optional[bytes]:
        self.key_queries += 1
        if self.key_queries <= self.key_publish_after:
            return None
        return self.public_key_bytes

    async def get_definition_state(self, offset: int) -> DefinitionState:
        entry = self._definitions.get(offset)
        return entry.state if entry else DefinitionState.UNINITIALIZED

    async def init_definition(self, offset: int, name: str) -> None:
        self.init_calls += 1
        # yield so concurrent registrations genuinely interleave
        await asyncio.sleep(0)
        if comp_def_offset(name) != offset:
            raise SubmissionRejectedError(f"Offset {offset} does not match {name!r}")
        if offset in self._definitions:
            raise DefinitionExistsError(f"Definition {name!r} already exists")
        self._definitions[offset] = _DefinitionEntry(name, DefinitionState.INITIALIZING)
        logger.info(f"Registered computation definition {name} (offset={offset})")

    async def upload_program(self, offset: int, body: bytes) -> None:
        self.upload_calls += 1
        await asyncio.sleep(0)
        entry = self._require_definition(offset)
        if entry.state == DefinitionState.ACTIVE:
            return
        if not body:
            raise SubmissionRejectedError("Program body is empty")
        entry.program = bytes(body)
        entry.state = DefinitionState.ACTIVE

    async def finalize_definition(self, offset: int) -> None:
        self.finalize_calls += 1
        await asyncio.sleep(0)
        entry = self._require_definition(offset)
        entry.state = DefinitionState.ACTIVE

    def _require_definition(self, offset: int) -> _DefinitionEntry:
        entry = self._definitions.get(offset)
        if entry is None:
            raise SubmissionRejectedError(f"No definition at offset {offset}")
        return entry

    # -------------------------------------------------------------------------
    # REQUESTS
    # -------------------------------------------------------------------------

    async def submit_request(self, request: ComputationRequest) -> SubmissionReceipt:
        cid = request.correlation_id
        entry = self._definitions.get(request.definition_offset)
        if entry is None or entry.state != DefinitionState.ACTIVE:
            raise SubmissionRejectedError(
                f"Computation definition {request.kind!r} is not active",
                correlation_id=cid,
            )
        if request.submitter in self.rejected_submitters:
            raise SubmissionRejectedError(
                f"Submitter {request.submitter!r} is not authorized",
                correlation_id=cid,
            )
        if len(request.nonce) != NONCE_SIZE:
            raise SubmissionRejectedError("Malformed nonce", correlation_id=cid)
        if cid in self._requests:
            raise DuplicateCorrelationError(cid)

        self._requests[cid] = request
        self._records[cid] = FinalizationRecord(cid, FinalizationStatus.PENDING)
        logger.info(f"Queued computation {cid.hex()} ({request.kind})")

        if self.auto_finalize:
            task = asyncio.get_running_loop().create_task(self._finalize_later(cid))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return SubmissionReceipt(
            correlation_id=cid,
            reference=f"local-{secrets.token_hex(8)}",
            submitted_at=time.time(),
        )

    async def _finalize_later(self, correlation_id: bytes) -> None:
        if self.finalize_delay:
            await asyncio.sleep(self.finalize_delay)
        await self.finalize(correlation_id)

    async def finalize(self, correlation_id: bytes) -> FinalizationRecord:
        """Execute a pending request, record the outcome and notify listeners."""
        request = self._requests[correlation_id]
        current = self._records[correlation_id]
        if current.is_terminal:
            return current

        handler = self._handlers.get(request.kind)
        try:
            if handler is None:
                raise ComputationAborted(f"No handler for {request.kind!r}")
            secret = derive_shared_secret(self._cluster, request.ephemeral_public_key)
            inputs = open_fields(
                secret,
                request.sealed_inputs,
                bit_width=None,
                associated_data=correlation_id,
            )
            outputs = list(handler(inputs))
            # the result nonce is independent of the request nonce
            result_nonce = secrets.token_bytes(NONCE_SIZE)
            while result_nonce == request.nonce:
                result_nonce = secrets.token_bytes(NONCE_SIZE)
            sealed = seal_fields(
                secret,
                result_nonce,
                outputs,
                bit_width=self.output_bit_width,
                associated_data=correlation_id,
            )
            record = FinalizationRecord(
                correlation_id=correlation_id,
                status=FinalizationStatus.FINALIZED,
                result_nonce=result_nonce,
                ciphertext_outputs=sealed.blocks,
                tag=sealed.tag,
            )
        except ComputationAborted as e:
            record = FinalizationRecord(correlation_id, FinalizationStatus.FAILED, reason=e.reason)
        except (DecryptionMismatchError, InvalidPeerKeyError) as e:
            record = FinalizationRecord(
                correlation_id, FinalizationStatus.FAILED, reason=f"Input decryption failed: {e}"
            )

        self._records[correlation_id] = record
        logger.info(f"Finalized computation {correlation_id.hex()}: {record.status.value}")

        if not self.drop_notifications:
            self._emit(request, record)
        return record

    async def finalize_pending(self, order: Optional[Sequence[bytes]] = None) -> None:
        """Finalize pending requests, in ``order`` when given."""
        for cid in list(order) if order is not None else self.pending():
            await self.finalize(cid)

    async def get_finalization(self, correlation_id: bytes) -> Optional[FinalizationRecord]:
        self.finalization_polls += 1
        if self.unavailable_polls > 0:
            self.unavailable_polls -= 1
            raise SubstrateUnavailableError("Substrate RPC temporarily unavailable")
        return self._records.get(correlation_id)

    # -------------------------------------------------------------------------
    # NOTIFICATIONS
    # -------------------------------------------------------------------------

    async def add_listener(self, event_name: str, callback: NotificationCallback) -> int:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = (event_name, callback)
        return listener_id

    async def remove_listener(self, listener_id: int) -> None:
        self._listeners.pop(listener_id, None)

    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit(self, request: ComputationRequest, record: FinalizationRecord) -> None:
        suffix = "finalized" if record.status == FinalizationStatus.FINALIZED else "failed"
        notification = CompletionNotification(
            event_name=f"{request.kind}:{suffix}",
            status=record.status,
            correlation_id=request.correlation_id if self.emit_correlation_ids else None,
            submitter=request.submitter,
            result_nonce=record.result_nonce,
            ciphertext_outputs=record.ciphertext_outputs,
            tag=record.tag,
            reason=record.reason,
        )
        self.emit(notification)

    def emit(self, notification: CompletionNotification) -> None:
        """Deliver a notification to every listener on its event name."""
        delivered = 0
        for event_name, callback in list(self._listeners.values()):
            if event_name == notification.event_name:
                callback(notification)
                delivered += 1
        if not delivered:
            logger.info(
                f"Orphaned notification {notification.event_name}",
                extra={"event": notification.event_name},
            )

    async def aclose(self) -> None:
        """Cancel background finalization tasks."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

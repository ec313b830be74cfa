"""
Computation Protocol Models

Records exchanged between the client and the execution substrate:
definitions, requests, submission receipts, finalization records and
completion notifications.
"""

import hashlib
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from ..confidential.cipher import DEFAULT_BIT_WIDTH, SealedFields

CORRELATION_ID_SIZE = 8


class DefinitionState(str, Enum):
    """Lifecycle of a computation definition on the substrate."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"


class FinalizationStatus(str, Enum):
    """Cluster-side outcome of a request."""
    PENDING = "pending"
    FINALIZED = "finalized"
    FAILED = "failed"


class RequestStatus(str, Enum):
    """Client-side view of an in-flight request."""
    INITIATED = "initiated"
    COMPUTING = "computing"
    COMPUTED = "computed"
    FAILED = "failed"


def comp_def_offset(name: str) -> int:
    """Stable u32 address of a computation kind: first 4 bytes of sha256(name), LE."""
    return int.from_bytes(hashlib.sha256(name.encode("utf-8")).digest()[:4], "little")


def new_correlation_id() -> bytes:
    """8 random bytes, collision-resistant for the expected request volume."""
    return secrets.token_bytes(CORRELATION_ID_SIZE)


def computation_offset(correlation_id: bytes) -> int:
    """Substrate-side u64 address of a request."""
    if len(correlation_id) != CORRELATION_ID_SIZE:
        raise ValueError(
            f"Correlation id must be {CORRELATION_ID_SIZE} bytes, got {len(correlation_id)}"
        )
    return int.from_bytes(correlation_id, "little")


@dataclass(frozen=True)
class ComputationDefinition:
    """
    A registered kind of confidential computation.

    Attributes:
        name: Stable computation name, e.g. "compute_swap"
        input_bit_width: Width of each encrypted input field
        output_bit_width: Width of each encrypted output field
    """
    name: str
    input_bit_width: int = DEFAULT_BIT_WIDTH
    output_bit_width: int = DEFAULT_BIT_WIDTH

    @property
    def offset(self) -> int:
        return comp_def_offset(self.name)

    @property
    def finalized_event(self) -> str:
        return f"{self.name}:finalized"

    @property
    def failed_event(self) -> str:
        return f"{self.name}:failed"

    @property
    def event_names(self) -> Tuple[str, str]:
        return (self.finalized_event, self.failed_event)


@dataclass(frozen=True)
class ComputationRequest:
    """Immutable once submitted; identified by its correlation id."""
    correlation_id: bytes
    kind: str
    ephemeral_public_key: bytes
    nonce: bytes
    ciphertext_fields: Tuple[bytes, ...]
    submitter: str
    tag: Optional[bytes] = None

    @property
    def computation_offset(self) -> int:
        return computation_offset(self.correlation_id)

    @property
    def definition_offset(self) -> int:
        return comp_def_offset(self.kind)

    @property
    def sealed_inputs(self) -> SealedFields:
        return SealedFields(nonce=self.nonce, blocks=self.ciphertext_fields, tag=self.tag)


@dataclass(frozen=True)
class SubmissionReceipt:
    """Substrate acknowledgement that a request was queued."""
    correlation_id: bytes
    reference: str
    submitted_at: float


@dataclass(frozen=True)
class FinalizationRecord:
    """Created by the cluster; observed, never mutated, by the client."""
    correlation_id: bytes
    status: FinalizationStatus
    result_nonce: Optional[bytes] = None
    ciphertext_outputs: Tuple[bytes, ...] = ()
    tag: Optional[bytes] = None
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (FinalizationStatus.FINALIZED, FinalizationStatus.FAILED)


@dataclass(frozen=True)
class CompletionNotification:
    """
    Payload emitted on a definition's notification channel.

    ``correlation_id`` is None when the substrate only reports implicit
    fields (e.g. the submitter); the correlator then falls back to matching
    by submitter identity.
    """
    event_name: str
    status: FinalizationStatus
    correlation_id: Optional[bytes] = None
    submitter: Optional[str] = None
    result_nonce: Optional[bytes] = None
    ciphertext_outputs: Tuple[bytes, ...] = field(default_factory=tuple)
    tag: Optional[bytes] = None
    reason: Optional[str] = None

    def sealed_outputs(self) -> SealedFields:
        if self.result_nonce is None:
            raise ValueError("Notification carries no result nonce")
        return SealedFields(
            nonce=self.result_nonce,
            blocks=tuple(self.ciphertext_outputs),
            tag=self.tag,
        )

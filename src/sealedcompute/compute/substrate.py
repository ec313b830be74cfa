"""
Execution Substrate Interface.

The ledger/cluster that stores requests, runs them confidentially and
emits completion notifications is an external collaborator. This module
fixes the boundary the client protocol consumes.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from .models import (
    CompletionNotification,
    ComputationRequest,
    DefinitionState,
    FinalizationRecord,
    SubmissionReceipt,
)

NotificationCallback = Callable[[CompletionNotification], None]


class ExecutionSubstrate(ABC):
    """
    Abstract execution substrate.

    Any call may raise SubstrateUnavailableError for transient network or
    availability problems; callers retry those within their own budgets.
    """

    @abstractmethod
    async def get_cluster_public_key(self, context: str) -> Optional[bytes]:
        """Cluster X25519 public key, or None while not yet published."""

    @abstractmethod
    async def get_definition_state(self, offset: int) -> DefinitionState:
        """Current state of the definition at ``offset``."""

    @abstractmethod
    async def init_definition(self, offset: int, name: str) -> None:
        """
        Register a computation definition.

        Raises:
            DefinitionExistsError: If a definition already exists at ``offset``
        """

    @abstractmethod
    async def upload_program(self, offset: int, body: bytes) -> None:
        """Upload a precompiled program body, activating the definition."""

    @abstractmethod
    async def finalize_definition(self, offset: int) -> None:
        """Activate a definition whose program was uploaded out-of-band."""

    @abstractmethod
    async def submit_request(self, request: ComputationRequest) -> SubmissionReceipt:
        """
        Queue a request as one atomic unit.

        Raises:
            DuplicateCorrelationError: If the correlation id is already in use
            SubmissionRejectedError: On validation or authorization failure
        """

    @abstractmethod
    async def get_finalization(self, correlation_id: bytes) -> Optional[FinalizationRecord]:
        """Finalization record for a request, or None if the substrate has none yet."""

    @abstractmethod
    async def add_listener(self, event_name: str, callback: NotificationCallback) -> int:
        """Register a notification callback; returns a listener id."""

    @abstractmethod
    async def remove_listener(self, listener_id: int) -> None:
        """Deregister a callback. Unknown ids are ignored."""

    @abstractmethod
    def listener_count(self) -> int:
        """Number of registered listeners, for leak diagnostics."""

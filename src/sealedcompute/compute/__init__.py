"""
SealedCompute Computation Protocol.

Request lifecycle against the execution substrate:
    definitions   one-time activation per computation kind
    submitter     sealed request submission with correlation ids
    finalization  bounded polling for terminal records
    correlator    one-shot result matching and decryption
    local         in-process substrate for tests and demos
"""

from .correlator import ResultCorrelator
from .definitions import ComputationDefinitionRegistry
from .events import OneShotSubscription
from .finalization import FinalizationWaiter
from .local import ComputationAborted, LocalExecutionSubstrate, compute_swap
from .models import (
    CompletionNotification,
    ComputationDefinition,
    ComputationRequest,
    DefinitionState,
    FinalizationRecord,
    FinalizationStatus,
    RequestStatus,
    SubmissionReceipt,
    comp_def_offset,
    computation_offset,
    new_correlation_id,
)
from .submitter import InFlightRequest, RequestSubmitter
from .substrate import ExecutionSubstrate

__all__ = [
    # Substrate
    "ExecutionSubstrate",
    "LocalExecutionSubstrate",
    "ComputationAborted",
    "compute_swap",
    # Components
    "ComputationDefinitionRegistry",
    "RequestSubmitter",
    "InFlightRequest",
    "FinalizationWaiter",
    "ResultCorrelator",
    "OneShotSubscription",
    # Models
    "ComputationDefinition",
    "ComputationRequest",
    "CompletionNotification",
    "DefinitionState",
    "FinalizationRecord",
    "FinalizationStatus",
    "RequestStatus",
    "SubmissionReceipt",
    "comp_def_offset",
    "computation_offset",
    "new_correlation_id",
]

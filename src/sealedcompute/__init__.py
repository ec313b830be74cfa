"""
SealedCompute - Confidential Computation Client

SealedCompute submits encrypted computation requests to an execution
cluster that computes over the sealed inputs and returns sealed outputs
only the submitting client can open.

Core Features:
- X25519 key agreement with the cluster's published key
- Field cipher sealing all inputs of a request under one nonce
- Idempotent computation definition activation
- Correlated, order-independent result delivery with bounded waits

Components:
- confidential: key exchange, sessions, nonces, cipher
- compute: definitions, submission, finalization, result correlation
- reliability: retry policy and deadline budgets
- config: client configuration

Usage:
    from sealedcompute import ConfidentialComputeClient, LocalExecutionSubstrate
    from sealedcompute.compute import compute_swap

    substrate = LocalExecutionSubstrate()
    substrate.register_handler("compute_swap", compute_swap)

    async with ConfidentialComputeClient(substrate) as client:
        execute, withdraw = await client.run("compute_swap", [10_000_000, 8_000_000], "alice")

    # CLI
    $ sealedcompute demo --amount 10000000 --min-output 8000000
"""

from .version import sealedcompute_version as _v

__version__ = _v()
del _v

from .client import ConfidentialComputeClient
from .compute import ExecutionSubstrate, LocalExecutionSubstrate
from .config import SealedComputeConfig, load_config
from .errors import (
    ComputationFailedError,
    DecryptionMismatchError,
    DuplicateCorrelationError,
    FinalizationTimeoutError,
    KeyUnavailableError,
    SealedComputeError,
    SubmissionRejectedError,
)

__all__ = [
    "__version__",
    "ConfidentialComputeClient",
    "ExecutionSubstrate",
    "LocalExecutionSubstrate",
    "SealedComputeConfig",
    "load_config",
    "SealedComputeError",
    "KeyUnavailableError",
    "SubmissionRejectedError",
    "DuplicateCorrelationError",
    "FinalizationTimeoutError",
    "ComputationFailedError",
    "DecryptionMismatchError",
]

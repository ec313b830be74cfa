"""
SealedCompute error taxonomy.

Transient substrate problems are retried locally with bounded attempts.
Everything past the retry budget, and every terminal cluster-reported
outcome, surfaces as one of the errors below with enough context
(correlation id, attempt count, elapsed time) for operator diagnosis.
"""

from typing import Optional


def _hex(correlation_id: Optional[bytes]) -> str:
    return correlation_id.hex() if correlation_id else "-"


class SealedComputeError(Exception):
    """Base class for all SealedCompute errors."""

    def __init__(
        self,
        message: str,
        correlation_id: Optional[bytes] = None,
        attempts: Optional[int] = None,
    ):
        self.correlation_id = correlation_id
        self.attempts = attempts
        super().__init__(message)


class SubstrateUnavailableError(SealedComputeError, ConnectionError):
    """Transient network or availability failure of the execution substrate."""


class RetryExhaustedError(SealedComputeError):
    """Raised when all retry attempts are exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Optional[BaseException] = None,
    ):
        self.last_exception = last_exception
        super().__init__(message, attempts=attempts)


class KeyUnavailableError(SealedComputeError):
    """The cluster public key was not published within the retry budget."""


class InvalidPeerKeyError(SealedComputeError):
    """The supplied cluster public key is not a valid curve point."""


class NonceReuseError(SealedComputeError):
    """A nonce was presented twice for encryption under the same shared secret."""


class DefinitionExistsError(SealedComputeError):
    """The substrate already holds a definition at this offset."""


class DuplicateCorrelationError(SealedComputeError):
    """The correlation id collided with an existing request.

    Recoverable: regenerate the correlation id and resubmit.
    """

    def __init__(self, correlation_id: bytes, attempts: Optional[int] = None):
        super().__init__(
            f"Correlation id {_hex(correlation_id)} already in use",
            correlation_id=correlation_id,
            attempts=attempts,
        )


class SubmissionRejectedError(SealedComputeError):
    """The substrate refused the request (malformed payload, unauthorized submitter)."""

    def __init__(
        self,
        reason: str,
        correlation_id: Optional[bytes] = None,
    ):
        self.reason = reason
        super().__init__(reason, correlation_id=correlation_id)


class FinalizationTimeoutError(SealedComputeError):
    """No terminal outcome observed within the caller's timeout.

    The request may still be pending on the cluster; callers may wait again
    on the same correlation id but must not resubmit.
    """

    def __init__(
        self,
        correlation_id: bytes,
        timeout: float,
        elapsed: float,
        attempts: Optional[int] = None,
        stage: str = "finalization",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.stage = stage
        super().__init__(
            f"Timed out waiting for {stage} of {_hex(correlation_id)} "
            f"after {elapsed:.2f}s (limit: {timeout}s, polls: {attempts})",
            correlation_id=correlation_id,
            attempts=attempts,
        )


class ComputationFailedError(SealedComputeError):
    """The cluster executed the request and the computation itself reported failure."""

    def __init__(self, correlation_id: bytes, reason: str):
        self.reason = reason
        super().__init__(
            f"Computation {_hex(correlation_id)} failed: {reason}",
            correlation_id=correlation_id,
        )


class DecryptionMismatchError(SealedComputeError):
    """Ciphertext, nonce and key are inconsistent; never treated as a valid plaintext."""

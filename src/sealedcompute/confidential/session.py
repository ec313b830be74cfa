"""
Confidential Key Exchange Session.

Manages X25519-based encrypted sessions between a client and the execution
cluster. Each session holds an ephemeral key pair whose private scalar
never leaves this process; the public point travels with every request.

Protocol:
    1. Client fetches the cluster public key (published asynchronously,
       so the fetch is retried with a bounded policy)
    2. Client generates an ephemeral X25519 key pair
    3. Client derives the shared secret (X25519 + HKDF-SHA256)
    4. Inputs are sealed under a fresh nonce per request
    5. Outputs are opened with the cluster-generated result nonce
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..errors import InvalidPeerKeyError, KeyUnavailableError, RetryExhaustedError
from ..reliability.retry import RetryConfig, async_retry
from .cipher import DEFAULT_BIT_WIDTH, SealedFields, open_fields, seal_fields, tag_matches
from .nonce import NonceManager

if TYPE_CHECKING:
    from ..compute.substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)

PUBLIC_KEY_SIZE = 32
KDF_INFO = b"sealedcompute/v1 field-cipher"


class SharedSecret:
    """
    Symmetric key material derived from an X25519 exchange.

    Owned by one session; never serialized. The raw exchange output is
    expanded with HKDF into a keystream key and a tag key and then dropped.
    """

    __slots__ = ("keystream_key", "tag_key", "fingerprint")

    def __init__(self, raw: bytes):
        okm = HKDF(
            algorithm=hashes.SHA256(),
            length=64,
            salt=None,
            info=KDF_INFO,
        ).derive(raw)
        self.keystream_key = okm[:32]
        self.tag_key = okm[32:]
        self.fingerprint = hashlib.sha256(b"fingerprint" + okm).hexdigest()[:16]

    def __repr__(self) -> str:
        return f"SharedSecret(fingerprint={self.fingerprint})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SharedSecret):
            return NotImplemented
        return self.fingerprint == other.fingerprint

    def __hash__(self) -> int:
        return hash(self.fingerprint)


@dataclass
class EphemeralKeyPair:
    """Client X25519 key pair, generated fresh per session."""

    private_key: x25519.X25519PrivateKey = field(repr=False)
    public_key: x25519.X25519PublicKey

    @classmethod
    def generate(cls) -> "EphemeralKeyPair":
        private_key = x25519.X25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())

    @property
    def public_bytes(self) -> bytes:
        """Get public key as raw bytes."""
        return self.public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)


def load_public_key(data: bytes) -> x25519.X25519PublicKey:
    """
    Parse a raw X25519 public key.

    Raises:
        InvalidPeerKeyError: If the bytes are not a valid public key
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != PUBLIC_KEY_SIZE:
        raise InvalidPeerKeyError(
            f"Peer public key must be {PUBLIC_KEY_SIZE} bytes, "
            f"got {len(data) if isinstance(data, (bytes, bytearray)) else type(data).__name__}"
        )
    try:
        return x25519.X25519PublicKey.from_public_bytes(bytes(data))
    except ValueError as e:
        raise InvalidPeerKeyError(f"Invalid peer public key: {e}") from e


def derive_shared_secret(
    keypair: EphemeralKeyPair,
    cluster_public_key: bytes,
) -> SharedSecret:
    """
    Derive the session shared secret. Pure and side-effect free.

    Raises:
        InvalidPeerKeyError: If the cluster key is malformed or of low order
    """
    peer = load_public_key(cluster_public_key)
    try:
        raw = keypair.private_key.exchange(peer)
    except ValueError as e:
        # cryptography rejects all-zero outputs from low-order points
        raise InvalidPeerKeyError(f"Key agreement failed: {e}") from e
    return SharedSecret(raw)


@dataclass
class ConfidentialSession:
    """
    A single client session against one cluster key.

    Requests sharing this session share its secret; each request draws a
    distinct nonce from the session's NonceManager.
    """

    session_id: str
    created_at: datetime
    context: str
    cluster_public_key: bytes
    keypair: EphemeralKeyPair = field(repr=False)
    shared_secret: SharedSecret = field(repr=False)
    nonce_manager: NonceManager = field(default_factory=NonceManager, repr=False)

    # Session metrics
    requests_sealed: int = 0
    results_opened: int = 0
    destroyed: bool = False

    @property
    def public_key_bytes(self) -> bytes:
        return self.keypair.public_bytes

    def new_nonce(self) -> bytes:
        """Fresh nonce, never before used under this session's secret."""
        self._ensure_live()
        return self.nonce_manager.generate(self.shared_secret.fingerprint)

    def seal_inputs(
        self,
        plaintexts: Sequence[int],
        bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
        associated_data: bytes = b"",
    ) -> SealedFields:
        """Encrypt all inputs of one request under one fresh nonce."""
        nonce = self.new_nonce()
        sealed = seal_fields(
            self.shared_secret,
            nonce,
            plaintexts,
            bit_width=bit_width,
            associated_data=associated_data,
        )
        self.requests_sealed += 1
        return sealed

    def open_outputs(
        self,
        sealed: SealedFields,
        bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
        associated_data: bytes = b"",
    ) -> List[int]:
        """Decrypt a cluster result sealed under its own result nonce."""
        self._ensure_live()
        plaintexts = open_fields(
            self.shared_secret, sealed, bit_width=bit_width, associated_data=associated_data
        )
        self.results_opened += 1
        return plaintexts

    def outputs_match(self, sealed: SealedFields, associated_data: bytes) -> bool:
        """True if a tagged result was sealed for ``associated_data`` under this session."""
        if self.destroyed:
            return False
        return tag_matches(self.shared_secret, sealed, associated_data)

    def destroy(self) -> None:
        """Retire the session; it cannot seal or open anything afterwards."""
        if self.destroyed:
            return
        self.nonce_manager.forget(self.shared_secret.fingerprint)
        self.destroyed = True
        logger.info(f"Destroyed confidential session {self.session_id}")

    def get_metadata(self) -> Dict[str, object]:
        """Get session metadata (safe to expose)."""
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "context": self.context,
            "client_public_key": self.public_key_bytes.hex(),
            "cluster_public_key": self.cluster_public_key.hex(),
            "secret_fingerprint": self.shared_secret.fingerprint,
            "requests_sealed": self.requests_sealed,
            "results_opened": self.results_opened,
            "destroyed": self.destroyed,
        }

    def _ensure_live(self) -> None:
        if self.destroyed:
            raise RuntimeError(f"Session {self.session_id} has been destroyed")


class KeyExchangeSession:
    """
    Fetches the cluster key and opens confidential sessions against it.

    Usage:
        exchange = KeyExchangeSession(substrate, RetryConfig.for_key_fetch())
        session = await exchange.open_session("default")
        sealed = session.seal_inputs([amount, min_output])
    """

    def __init__(
        self,
        substrate: "ExecutionSubstrate",
        retry_config: Optional[RetryConfig] = None,
    ):
        self._substrate = substrate
        self.retry_config = retry_config or RetryConfig.for_key_fetch()

    async def fetch_cluster_public_key(self, context: str) -> bytes:
        """
        Fetch the cluster's public key, retrying while it is unpublished.

        Raises:
            KeyUnavailableError: If no non-empty key appears within the budget
        """
        try:
            key = await async_retry(
                self._substrate.get_cluster_public_key,
                context,
                config=self.retry_config,
                accept=bool,
                operation="fetch_cluster_public_key",
            )
        except RetryExhaustedError as e:
            raise KeyUnavailableError(
                f"Cluster public key for context {context!r} unavailable "
                f"after {e.attempts} attempts",
                attempts=e.attempts,
            ) from e

        logger.info(f"Fetched cluster public key for context {context!r}")
        return bytes(key)

    async def open_session(self, context: str) -> ConfidentialSession:
        """Fetch the cluster key, generate an ephemeral key pair and derive the secret."""
        cluster_key = await self.fetch_cluster_public_key(context)
        keypair = EphemeralKeyPair.generate()
        secret = derive_shared_secret(keypair, cluster_key)

        session = ConfidentialSession(
            session_id=f"cs-{hashlib.sha256(os.urandom(32)).hexdigest()[:24]}",
            created_at=datetime.now(timezone.utc),
            context=context,
            cluster_public_key=cluster_key,
            keypair=keypair,
            shared_secret=secret,
        )
        logger.info(
            f"Opened confidential session {session.session_id} "
            f"(context={context}, secret={secret.fingerprint})"
        )
        return session


"""
SealedCompute Confidential Module.

Provides the client side of the confidential channel:
- X25519 key agreement with the cluster's published key
- HKDF-derived session secrets
- Block-indexed field cipher with authentication tags
- Per-secret nonce uniqueness tracking
"""

from .cipher import (
    BLOCK_SIZE,
    FIELD_PRIME,
    SealedFields,
    decrypt_fields,
    encrypt_fields,
    open_fields,
    seal_fields,
    tag_matches,
)
from .nonce import NONCE_SIZE, NonceManager, nonce_from_int, nonce_to_int
from .session import (
    ConfidentialSession,
    EphemeralKeyPair,
    KeyExchangeSession,
    SharedSecret,
    derive_shared_secret,
)

__all__ = [
    "KeyExchangeSession",
    "ConfidentialSession",
    "EphemeralKeyPair",
    "SharedSecret",
    "derive_shared_secret",
    "NonceManager",
    "NONCE_SIZE",
    "nonce_to_int",
    "nonce_from_int",
    "SealedFields",
    "encrypt_fields",
    "decrypt_fields",
    "seal_fields",
    "open_fields",
    "tag_matches",
    "FIELD_PRIME",
    "BLOCK_SIZE",
]

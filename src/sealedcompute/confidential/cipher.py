"""
Field Cipher Codec.

Encrypts unsigned integers into fixed-size 32-byte ciphertext blocks over
the prime field p = 2^255 - 19, the cluster's native element size.

Construction (block-indexed counter mode):
    k_i = HMAC-SHA512(keystream_key, "ks" || nonce || u64le(i)) mod p
    c_i = (m_i + k_i) mod p

The keystream element depends on the field index i, so a single nonce can
safely cover every field of ONE request. It must never be reused for a
second request under the same secret; NonceManager enforces that.

Integrity: seal_fields adds an HMAC-SHA256 tag over the nonce, the field
count, any associated data and every block. open_fields verifies it before
decrypting. Without a tag, decryption still fails explicitly on
non-canonical blocks and on values wider than the declared bit width.
"""

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from ..errors import DecryptionMismatchError
from .nonce import NONCE_SIZE

if TYPE_CHECKING:
    from .session import SharedSecret

FIELD_PRIME = 2**255 - 19
BLOCK_SIZE = 32
TAG_SIZE = 32
DEFAULT_BIT_WIDTH = 64


@dataclass(frozen=True)
class SealedFields:
    """Ordered ciphertext blocks with the nonce they were sealed under."""

    nonce: bytes
    blocks: Tuple[bytes, ...]
    tag: Optional[bytes] = None

    def __len__(self) -> int:
        return len(self.blocks)


def _check_nonce(nonce: bytes) -> None:
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")


def _keystream_element(key: bytes, nonce: bytes, index: int) -> int:
    h = hmac.HMAC(key, hashes.SHA512())
    h.update(b"ks" + nonce + struct.pack("<Q", index))
    return int.from_bytes(h.finalize(), "little") % FIELD_PRIME


def _check_plaintext(value: int, index: int, bit_width: Optional[int]) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Field {index} must be an int, got {type(value).__name__}")
    limit = FIELD_PRIME if bit_width is None else min(FIELD_PRIME, 1 << bit_width)
    if not 0 <= value < limit:
        raise ValueError(f"Field {index} value out of range [0, {limit})")


def encrypt_fields(
    secret: "SharedSecret",
    nonce: bytes,
    plaintexts: Sequence[int],
    bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
) -> List[bytes]:
    """
    Encrypt an ordered sequence of integers.

    Deterministic in (key, nonce, field index, plaintext).

    Args:
        secret: Session shared secret
        nonce: 16-byte nonce, used for this request only
        plaintexts: Unsigned integers below the field modulus
        bit_width: Bound on plaintext width; None allows the full field

    Returns:
        One 32-byte little-endian block per plaintext
    """
    _check_nonce(nonce)
    blocks = []
    for i, value in enumerate(plaintexts):
        _check_plaintext(value, i, bit_width)
        k = _keystream_element(secret.keystream_key, nonce, i)
        blocks.append(((value + k) % FIELD_PRIME).to_bytes(BLOCK_SIZE, "little"))
    return blocks


def decrypt_fields(
    secret: "SharedSecret",
    nonce: bytes,
    ciphertexts: Sequence[bytes],
    bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
) -> List[int]:
    """
    Invert encrypt_fields.

    Raises:
        DecryptionMismatchError: If a block is malformed or a decrypted value
            exceeds ``bit_width`` (the signature of a wrong key or nonce)
    """
    _check_nonce(nonce)
    limit = None if bit_width is None else 1 << bit_width
    plaintexts = []
    for i, block in enumerate(ciphertexts):
        if len(block) != BLOCK_SIZE:
            raise DecryptionMismatchError(
                f"Block {i} is {len(block)} bytes, expected {BLOCK_SIZE}"
            )
        c = int.from_bytes(block, "little")
        if c >= FIELD_PRIME:
            raise DecryptionMismatchError(f"Block {i} is not a canonical field element")
        value = (c - _keystream_element(secret.keystream_key, nonce, i)) % FIELD_PRIME
        if limit is not None and value >= limit:
            raise DecryptionMismatchError(
                f"Block {i} decrypted outside the {bit_width}-bit range; "
                f"key or nonce mismatch"
            )
        plaintexts.append(value)
    return plaintexts


def _tag_mac(
    secret: "SharedSecret",
    nonce: bytes,
    blocks: Sequence[bytes],
    associated_data: bytes = b"",
) -> hmac.HMAC:
    h = hmac.HMAC(secret.tag_key, hashes.SHA256())
    h.update(b"tag" + nonce + struct.pack("<I", len(blocks)))
    h.update(struct.pack("<I", len(associated_data)) + associated_data)
    for block in blocks:
        h.update(block)
    return h


def compute_tag(
    secret: "SharedSecret",
    nonce: bytes,
    blocks: Sequence[bytes],
    associated_data: bytes = b"",
) -> bytes:
    """Authentication tag over nonce, field count, associated data and blocks."""
    return _tag_mac(secret, nonce, blocks, associated_data).finalize()


def tag_matches(
    secret: "SharedSecret",
    sealed: SealedFields,
    associated_data: bytes = b"",
) -> bool:
    """True if ``sealed`` carries a tag that verifies under this secret and data."""
    if sealed.tag is None or len(sealed.tag) != TAG_SIZE:
        return False
    try:
        _tag_mac(secret, sealed.nonce, sealed.blocks, associated_data).verify(sealed.tag)
    except InvalidSignature:
        return False
    return True


def seal_fields(
    secret: "SharedSecret",
    nonce: bytes,
    plaintexts: Sequence[int],
    bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
    associated_data: bytes = b"",
) -> SealedFields:
    """
    Encrypt and authenticate an ordered sequence of integers.

    ``associated_data`` is bound into the tag but not encrypted. Requests
    and results pass their correlation id here, so blocks delivered under
    another request's id fail to open.
    """
    blocks = tuple(encrypt_fields(secret, nonce, plaintexts, bit_width=bit_width))
    tag = compute_tag(secret, nonce, blocks, associated_data)
    return SealedFields(nonce=nonce, blocks=blocks, tag=tag)


def open_fields(
    secret: "SharedSecret",
    sealed: SealedFields,
    bit_width: Optional[int] = DEFAULT_BIT_WIDTH,
    associated_data: bytes = b"",
) -> List[int]:
    """
    Verify (when tagged) and decrypt sealed fields.

    A width of None means the full field for tagged input. Untagged input is
    always range checked, at DEFAULT_BIT_WIDTH when no width is given.

    Raises:
        DecryptionMismatchError: On tag failure or inconsistent blocks
    """
    if sealed.tag is not None:
        if len(sealed.tag) != TAG_SIZE:
            raise DecryptionMismatchError(f"Tag must be {TAG_SIZE} bytes")
        try:
            _tag_mac(secret, sealed.nonce, sealed.blocks, associated_data).verify(sealed.tag)
        except InvalidSignature as e:
            raise DecryptionMismatchError(
                "Authentication tag mismatch; wrong key, nonce, correlation id "
                "or tampered blocks"
            ) from e
        return decrypt_fields(secret, sealed.nonce, sealed.blocks, bit_width=bit_width)

    return decrypt_fields(
        secret,
        sealed.nonce,
        sealed.blocks,
        bit_width=DEFAULT_BIT_WIDTH if bit_width is None else bit_width,
    )

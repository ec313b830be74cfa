"""
Nonce Manager.

Issues 16-byte nonces and enforces that no nonce is used twice for
encryption under the same shared secret. One nonce covers every field of
one request (the cipher is block-indexed by field position); a second
request must draw a new nonce.
"""

import logging
import secrets
import threading
from typing import Dict, Set

from ..errors import NonceReuseError

logger = logging.getLogger(__name__)

NONCE_SIZE = 16


def nonce_to_int(nonce: bytes) -> int:
    """Interpret a nonce as a little-endian u128."""
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    return int.from_bytes(nonce, "little")


def nonce_from_int(value: int) -> bytes:
    """Encode a u128 as a little-endian nonce."""
    return value.to_bytes(NONCE_SIZE, "little")


class NonceManager:
    """
    Tracks nonces consumed per shared-secret fingerprint.

    Thread-safe; the fingerprint is a non-secret digest supplied by
    SharedSecret so raw key material never enters this table.
    """

    def __init__(self) -> None:
        self._used: Dict[str, Set[bytes]] = {}
        self._lock = threading.Lock()

    def generate(self, fingerprint: str) -> bytes:
        """Draw a fresh random nonce and reserve it for ``fingerprint``."""
        while True:
            nonce = secrets.token_bytes(NONCE_SIZE)
            with self._lock:
                used = self._used.setdefault(fingerprint, set())
                if nonce not in used:
                    used.add(nonce)
                    return nonce
            logger.warning("Random nonce collided with a used nonce; redrawing")

    def reserve(self, fingerprint: str, nonce: bytes) -> None:
        """
        Reserve a caller-supplied nonce.

        Raises:
            NonceReuseError: If the nonce was already used under this secret
        """
        if len(nonce) != NONCE_SIZE:
            raise ValueError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        with self._lock:
            used = self._used.setdefault(fingerprint, set())
            if nonce in used:
                raise NonceReuseError(
                    f"Nonce {nonce.hex()} already used under secret {fingerprint}"
                )
            used.add(nonce)

    def used_count(self, fingerprint: str) -> int:
        with self._lock:
            return len(self._used.get(fingerprint, ()))

    def forget(self, fingerprint: str) -> None:
        """Drop the table for a secret that has been destroyed."""
        with self._lock:
            self._used.pop(fingerprint, None)

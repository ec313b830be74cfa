"""
Unit tests for the confidential key exchange session.

Tests key agreement, session sealing/opening, destruction and the
bounded cluster key fetch.
"""

import pytest

from sealedcompute.compute import LocalExecutionSubstrate
from sealedcompute.confidential import (
    EphemeralKeyPair,
    KeyExchangeSession,
    derive_shared_secret,
)
from sealedcompute.errors import InvalidPeerKeyError, KeyUnavailableError
from sealedcompute.reliability import RetryConfig


class TestKeyAgreement:

    def test_both_sides_derive_same_secret(self):
        client = EphemeralKeyPair.generate()
        cluster = EphemeralKeyPair.generate()
        assert derive_shared_secret(client, cluster.public_bytes) == derive_shared_secret(
            cluster, client.public_bytes
        )

    def test_distinct_peers_distinct_secrets(self):
        client = EphemeralKeyPair.generate()
        a = derive_shared_secret(client, EphemeralKeyPair.generate().public_bytes)
        b = derive_shared_secret(client, EphemeralKeyPair.generate().public_bytes)
        assert a != b

    def test_derived_keys_split(self, secret_pair):
        secret, _ = secret_pair
        assert len(secret.keystream_key) == 32
        assert len(secret.tag_key) == 32
        assert secret.keystream_key != secret.tag_key

    def test_repr_hides_key_material(self, secret_pair):
        secret, _ = secret_pair
        text = repr(secret)
        assert secret.keystream_key.hex() not in text
        assert secret.fingerprint in text

    def test_rejects_short_key(self):
        with pytest.raises(InvalidPeerKeyError, match="32 bytes"):
            derive_shared_secret(EphemeralKeyPair.generate(), b"\x01" * 31)

    def test_rejects_low_order_point(self):
        with pytest.raises(InvalidPeerKeyError):
            derive_shared_secret(EphemeralKeyPair.generate(), bytes(32))


class TestConfidentialSession:

    def test_seal_and_open_with_cluster(self, session_factory):
        cluster = EphemeralKeyPair.generate()
        session = session_factory(cluster.public_bytes)
        sealed = session.seal_inputs([10_000_000, 8_000_000])

        cluster_secret = derive_shared_secret(cluster, session.public_key_bytes)
        assert cluster_secret == session.shared_secret
        assert session.open_outputs(sealed) == [10_000_000, 8_000_000]
        assert session.requests_sealed == 1
        assert session.results_opened == 1

    def test_every_request_gets_a_fresh_nonce(self, session_factory):
        session = session_factory(EphemeralKeyPair.generate().public_bytes)
        nonces = [session.seal_inputs([1]).nonce for _ in range(200)]
        assert len(set(nonces)) == 200

    def test_destroyed_session_refuses_work(self, session_factory):
        session = session_factory(EphemeralKeyPair.generate().public_bytes)
        session.destroy()
        session.destroy()
        assert session.destroyed is True
        with pytest.raises(RuntimeError, match="destroyed"):
            session.seal_inputs([1])

    def test_metadata_is_safe(self, session_factory):
        session = session_factory(EphemeralKeyPair.generate().public_bytes)
        meta = session.get_metadata()
        assert meta["session_id"] == "cs-test"
        assert len(meta["client_public_key"]) == 64
        assert session.shared_secret.keystream_key.hex() not in str(meta)


class TestKeyExchangeSession:

    @pytest.mark.asyncio
    async def test_key_found_after_unpublished_polls(self):
        substrate = LocalExecutionSubstrate(key_publish_after=3)
        delays = []
        config = RetryConfig.fixed(max_attempts=10, delay=0.0)
        config.on_retry = lambda attempt, exc, delay: delays.append(attempt)

        exchange = KeyExchangeSession(substrate, retry_config=config)
        key = await exchange.fetch_cluster_public_key("default")

        assert key == substrate.public_key_bytes
        assert substrate.key_queries == 4
        assert delays == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_key_unavailable_after_budget(self):
        substrate = LocalExecutionSubstrate(key_publish_after=100)
        exchange = KeyExchangeSession(
            substrate, retry_config=RetryConfig.fixed(max_attempts=3, delay=0.0)
        )
        with pytest.raises(KeyUnavailableError) as exc_info:
            await exchange.fetch_cluster_public_key("default")
        assert exc_info.value.attempts == 3
        assert substrate.key_queries == 3

    @pytest.mark.asyncio
    async def test_open_session(self):
        substrate = LocalExecutionSubstrate()
        session = await KeyExchangeSession(substrate).open_session("ctx")
        assert session.session_id.startswith("cs-")
        assert session.context == "ctx"
        assert session.cluster_public_key == substrate.public_key_bytes

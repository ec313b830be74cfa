"""
Shared fixtures for SealedCompute tests.

Provides an in-process execution substrate with the reference swap
handler registered, plus helpers to build sessions without a key fetch.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from sealedcompute.compute import (
    ComputationDefinitionRegistry,
    LocalExecutionSubstrate,
    RequestSubmitter,
    compute_swap,
)
from sealedcompute.confidential import (
    ConfidentialSession,
    EphemeralKeyPair,
    derive_shared_secret,
)


def make_session(cluster_public_key: bytes, session_id: str = "cs-test") -> ConfidentialSession:
    keypair = EphemeralKeyPair.generate()
    return ConfidentialSession(
        session_id=session_id,
        created_at=datetime.now(timezone.utc),
        context="test",
        cluster_public_key=cluster_public_key,
        keypair=keypair,
        shared_secret=derive_shared_secret(keypair, cluster_public_key),
    )


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def secret_pair():
    """Client and cluster side of one key agreement."""
    client = EphemeralKeyPair.generate()
    cluster = EphemeralKeyPair.generate()
    return (
        derive_shared_secret(client, cluster.public_bytes),
        derive_shared_secret(cluster, client.public_bytes),
    )


@pytest_asyncio.fixture
async def substrate():
    sub = LocalExecutionSubstrate()
    sub.register_handler("compute_swap", compute_swap)
    yield sub
    await sub.aclose()


@pytest_asyncio.fixture
async def manual_substrate():
    """Substrate that finalizes only when the test says so."""
    sub = LocalExecutionSubstrate(auto_finalize=False)
    sub.register_handler("compute_swap", compute_swap)
    yield sub
    await sub.aclose()


@pytest.fixture
def session(substrate):
    return make_session(substrate.public_key_bytes)


@pytest.fixture
def manual_session(manual_substrate):
    return make_session(manual_substrate.public_key_bytes)


async def activate_definition(substrate, kind: str = "compute_swap") -> None:
    await ComputationDefinitionRegistry(substrate).ensure_active(kind)


@pytest.fixture
def activate():
    return activate_definition


@pytest_asyncio.fixture
async def manual_submitter(manual_substrate, manual_session):
    await activate_definition(manual_substrate)
    return RequestSubmitter(manual_substrate, manual_session)

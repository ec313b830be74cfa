"""
Unit tests for computation definition activation.

Tests both activation paths, idempotence under concurrency and recovery
from failed activations.
"""

import asyncio

import pytest

from sealedcompute.compute import (
    ComputationDefinitionRegistry,
    DefinitionState,
    LocalExecutionSubstrate,
    RequestSubmitter,
    comp_def_offset,
)
from sealedcompute.errors import SubmissionRejectedError, SubstrateUnavailableError


class TestCompDefOffset:

    def test_stable_u32(self):
        offset = comp_def_offset("compute_swap")
        assert offset == comp_def_offset("compute_swap")
        assert 0 <= offset < 2**32

    def test_distinct_names(self):
        assert comp_def_offset("compute_swap") != comp_def_offset("compute_price")


class TestEnsureActive:

    @pytest.mark.asyncio
    async def test_finalize_path(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        await registry.ensure_active("compute_swap")
        assert registry.state("compute_swap") == DefinitionState.ACTIVE
        assert substrate.init_calls == 1
        assert substrate.finalize_calls == 1
        assert substrate.upload_calls == 0

    @pytest.mark.asyncio
    async def test_upload_path(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        await registry.ensure_active("compute_swap", upload_program=True, program_body=b"\x01")
        assert substrate.upload_calls == 1
        assert substrate.finalize_calls == 0

    @pytest.mark.asyncio
    async def test_idempotent(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        await registry.ensure_active("compute_swap")
        await registry.ensure_active("compute_swap")
        assert substrate.init_calls == 1
        assert substrate.finalize_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_register_once(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        await asyncio.gather(*(registry.ensure_active("compute_swap") for _ in range(10)))
        assert substrate.init_calls == 1
        assert registry.state("compute_swap") == DefinitionState.ACTIVE

    @pytest.mark.asyncio
    async def test_racing_clients_both_succeed(self, substrate):
        first = ComputationDefinitionRegistry(substrate)
        second = ComputationDefinitionRegistry(substrate)
        await asyncio.gather(
            first.ensure_active("compute_swap"),
            second.ensure_active("compute_swap"),
        )
        assert first.state("compute_swap") == DefinitionState.ACTIVE
        assert second.state("compute_swap") == DefinitionState.ACTIVE
        assert await substrate.get_definition_state(comp_def_offset("compute_swap")) == (
            DefinitionState.ACTIVE
        )

    @pytest.mark.asyncio
    async def test_already_active_remotely(self, substrate):
        await ComputationDefinitionRegistry(substrate).ensure_active("compute_swap")
        fresh = ComputationDefinitionRegistry(substrate)
        await fresh.ensure_active("compute_swap")
        assert substrate.init_calls == 1
        assert fresh.state("compute_swap") == DefinitionState.ACTIVE

    @pytest.mark.asyncio
    async def test_upload_requires_body(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        with pytest.raises(ValueError, match="program body"):
            await registry.ensure_active("compute_swap", upload_program=True)

    @pytest.mark.asyncio
    async def test_activation_paths_are_exclusive(self, substrate):
        registry = ComputationDefinitionRegistry(substrate)
        await registry.ensure_active("compute_swap")
        with pytest.raises(ValueError, match="mutually exclusive"):
            await registry.ensure_active("compute_swap", upload_program=True, program_body=b"x")

    @pytest.mark.asyncio
    async def test_failed_activation_can_be_retried(self):
        substrate = LocalExecutionSubstrate()
        original = substrate.finalize_definition
        calls = []

        async def flaky_finalize(offset):
            calls.append(offset)
            if len(calls) == 1:
                raise SubstrateUnavailableError("down")
            await original(offset)

        substrate.finalize_definition = flaky_finalize
        registry = ComputationDefinitionRegistry(substrate)

        with pytest.raises(SubstrateUnavailableError):
            await registry.ensure_active("compute_swap")
        assert registry.state("compute_swap") == DefinitionState.UNINITIALIZED

        await registry.ensure_active("compute_swap")
        assert registry.state("compute_swap") == DefinitionState.ACTIVE
        assert substrate.init_calls == 1

    @pytest.mark.asyncio
    async def test_submission_rejected_before_activation(self, substrate, session):
        submitter = RequestSubmitter(substrate, session)
        with pytest.raises(SubmissionRejectedError, match="not active"):
            await submitter.submit("compute_swap", [1, 1], "alice")
        assert submitter.in_flight_count == 0

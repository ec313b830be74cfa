"""
Unit tests for the finalization waiter.

Tests terminal outcomes, tolerance of transient substrate failures and
the exact-timeout guarantee.
"""

import asyncio

import pytest

from sealedcompute.compute import FinalizationStatus, FinalizationWaiter
from sealedcompute.errors import FinalizationTimeoutError


class TestAwaitFinalization:

    @pytest.mark.asyncio
    async def test_returns_finalized_record(self, manual_substrate, manual_submitter):
        cid = await manual_submitter.submit("compute_swap", [10, 8], "alice")
        waiter = FinalizationWaiter(manual_substrate, poll_interval=0.01)

        wait = asyncio.ensure_future(waiter.await_finalization(cid, timeout=5.0))
        await asyncio.sleep(0.03)
        assert not wait.done()

        await manual_substrate.finalize(cid)
        record = await wait
        assert record.status == FinalizationStatus.FINALIZED
        assert record.correlation_id == cid
        assert len(record.ciphertext_outputs) == 2

    @pytest.mark.asyncio
    async def test_failure_is_a_terminal_record(self, manual_substrate, manual_submitter):
        cid = await manual_submitter.submit("compute_swap", [0, 8], "alice")
        await manual_substrate.finalize(cid)

        record = await FinalizationWaiter(manual_substrate).await_finalization(cid, timeout=1.0)
        assert record.status == FinalizationStatus.FAILED
        assert record.reason == "Invalid Amount"

    @pytest.mark.asyncio
    async def test_tolerates_transient_unavailability(self, manual_substrate, manual_submitter):
        cid = await manual_submitter.submit("compute_swap", [10, 8], "alice")
        await manual_substrate.finalize(cid)
        manual_substrate.unavailable_polls = 3
        polls_before = manual_substrate.finalization_polls

        waiter = FinalizationWaiter(manual_substrate, poll_interval=0.01)
        record = await waiter.await_finalization(cid, timeout=5.0)
        assert record.status == FinalizationStatus.FINALIZED
        assert manual_substrate.finalization_polls - polls_before == 4

    @pytest.mark.asyncio
    async def test_times_out_exactly(self, manual_substrate, manual_submitter):
        cid = await manual_submitter.submit("compute_swap", [10, 8], "alice")
        waiter = FinalizationWaiter(manual_substrate, poll_interval=0.05)
        loop = asyncio.get_running_loop()

        start = loop.time()
        with pytest.raises(FinalizationTimeoutError) as exc_info:
            await waiter.await_finalization(cid, timeout=0.2)
        elapsed = loop.time() - start

        assert elapsed >= 0.2
        assert elapsed < 1.0
        assert exc_info.value.correlation_id == cid
        assert exc_info.value.elapsed >= 0.2
        assert exc_info.value.attempts >= 2

    @pytest.mark.asyncio
    async def test_wait_again_after_timeout(self, manual_substrate, manual_submitter):
        cid = await manual_submitter.submit("compute_swap", [10, 8], "alice")
        waiter = FinalizationWaiter(manual_substrate, poll_interval=0.01)
        with pytest.raises(FinalizationTimeoutError):
            await waiter.await_finalization(cid, timeout=0.05)

        await manual_substrate.finalize(cid)
        record = await waiter.await_finalization(cid, timeout=1.0)
        assert record.status == FinalizationStatus.FINALIZED

    @pytest.mark.asyncio
    async def test_rejects_bad_poll_interval(self, manual_substrate):
        with pytest.raises(ValueError):
            FinalizationWaiter(manual_substrate, poll_interval=0)

"""
Block scanner test suite: per-slot parsing, failure swallowing, fetch policies.
"""

import asyncio

import aiohttp
import pytest

from xdex_indexer.block_scanner import (
    RetryPolicy,
    SkipPolicy,
    make_policy,
    parse_block,
    scan_range,
    scan_slot,
)
from xdex_indexer.rpc_client import SLOT_SKIPPED, RpcError

from conftest import MINT_A, FakeRpc, make_block, make_tx, swap_tx

class TestParseBlock:

    def test_only_xdex_transactions_kept_in_order(self):
        block = make_block(
            swap_tx("s1"),
            make_tx("other", logs=["Program Vote111 invoke [1]"]),
            swap_tx("s2"),
        )
        swaps = parse_block(block, slot=10)
        assert [s.signature for s in swaps] == ["s1", "s2"]
        assert all(s.slot == 10 for s in swaps)
        assert all(s.block_time == 1_700_000_000 for s in swaps)

    def test_transaction_that_raises_is_skipped(self, monkeypatch):
        from xdex_indexer import block_scanner

        real = block_scanner.parse_xdex_swap

        def flaky(tx, **kw):
            if tx["transaction"]["signatures"] == ["boom"]:
                raise KeyError("boom")
            return real(tx, **kw)

        monkeypatch.setattr(block_scanner, "parse_xdex_swap", flaky)
        swaps = parse_block(make_block(swap_tx("boom"), swap_tx("s1")), slot=3)
        assert [s.signature for s in swaps] == ["s1"]

    @pytest.mark.parametrize("block", [None, {}, {"transactions": []}, {"transactions": None}, "junk"])
    def test_empty_or_absent_block(self, block):
        assert parse_block(block, slot=1) == []

class TestScanSlot:

    @pytest.mark.asyncio
    async def test_single_fetch_per_slot(self):
        rpc = FakeRpc(100, {5: make_block(swap_tx("s1"))})
        swaps = await scan_slot(rpc, 5)
        assert [s.signature for s in swaps] == ["s1"]
        assert rpc.block_calls == [5]

    @pytest.mark.asyncio
    async def test_fetch_error_swallowed(self):
        rpc = FakeRpc(100, {5: aiohttp.ClientConnectionError("reset")})
        policy = SkipPolicy()
        assert await scan_slot(rpc, 5, policy) == []
        assert policy.failed_slots == [5]

    @pytest.mark.asyncio
    async def test_missing_block_is_not_a_failure(self):
        policy = SkipPolicy()
        assert await scan_slot(FakeRpc(100), 5, policy) == []
        assert policy.failed_slots == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        rpc = FakeRpc(100, {5: asyncio.CancelledError()})
        with pytest.raises(asyncio.CancelledError):
            await scan_slot(rpc, 5, RetryPolicy(retries=3, backoff=0))

class TestScanRange:

    @pytest.mark.asyncio
    async def test_sequential_and_concatenated(self):
        rpc = FakeRpc(100, {
            10: make_block(swap_tx("a")),
            11: RpcError(SLOT_SKIPPED, "Slot 11 was skipped"),
            12: make_block(swap_tx("b"), swap_tx("c")),
        })
        swaps = await scan_range(rpc, 10, 13)
        assert [s.signature for s in swaps] == ["a", "b", "c"]
        assert rpc.block_calls == [10, 11, 12, 13]

class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_transient_error_retried_then_succeeds(self):
        rpc = FakeRpc(100, {7: [asyncio.TimeoutError(), make_block(swap_tx("late"))]})
        policy = RetryPolicy(retries=2, backoff=0)
        swaps = await scan_slot(rpc, 7, policy)
        assert [s.signature for s in swaps] == ["late"]
        assert rpc.block_calls == [7, 7]
        assert policy.failed_slots == []

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        errs = [aiohttp.ClientError("x") for _ in range(3)]
        rpc = FakeRpc(100, {7: errs})
        policy = RetryPolicy(retries=2, backoff=0)
        assert await scan_slot(rpc, 7, policy) == []
        assert rpc.block_calls == [7, 7, 7]
        assert policy.failed_slots == [7]

    @pytest.mark.asyncio
    async def test_skipped_slot_not_retried(self):
        rpc = FakeRpc(100, {7: [RpcError(SLOT_SKIPPED, "skipped"), make_block(swap_tx("never"))]})
        policy = RetryPolicy(retries=3, backoff=0)
        assert await scan_slot(rpc, 7, policy) == []
        assert rpc.block_calls == [7]
        assert policy.failed_slots == []

    @pytest.mark.asyncio
    async def test_unknown_rpc_error_is_transient(self):
        rpc = FakeRpc(100, {7: [RpcError(-32005, "node is behind"), make_block(swap_tx("ok"))]})
        swaps = await scan_slot(rpc, 7, RetryPolicy(retries=1, backoff=0))
        assert swaps[0].token_in_mint == MINT_A

def test_make_policy():
    assert type(make_policy(0)) is SkipPolicy
    p = make_policy(3, backoff=0.25)
    assert isinstance(p, RetryPolicy)
    assert (p.retries, p.backoff) == (3, 0.25)

"""Shared fakes for the indexer test suite: an in-memory RPC node and store."""

import pytest

from xdex_indexer.xdex_config import XDEX_PROGRAM_ID

XDEX_INVOKE = f"Program {XDEX_PROGRAM_ID} invoke [1]"
MINT_A = "MintAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
MINT_B = "MintBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
MINT_C = "MintCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"

def bal(idx, mint, amount, owner="Owner1111", decimals=6,
        program="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"):
    return {
        "accountIndex": idx,
        "mint": mint,
        "owner": owner,
        "programId": program,
        "uiTokenAmount": {"amount": str(amount), "decimals": decimals},
    }

def make_tx(sig, pre=(), post=(), logs=(XDEX_INVOKE,), err=None):
    return {
        "transaction": {"signatures": [sig]},
        "meta": {
            "err": err,
            "logMessages": list(logs) if logs is not None else None,
            "preTokenBalances": list(pre),
            "postTokenBalances": list(post),
        },
    }

def swap_tx(sig, spent_mint=MINT_A, spent=100, got_mint=MINT_B, got=40):
    """User spends `spent` of one mint and receives `got` of another."""
    return make_tx(
        sig,
        pre=[bal(1, spent_mint, 1000), bal(2, got_mint, 500)],
        post=[bal(1, spent_mint, 1000 - spent), bal(2, got_mint, 500 + got)],
    )

def make_block(*txs, block_time=1_700_000_000):
    return {"blockTime": block_time, "transactions": list(txs)}

class FakeRpc:
    """
    blocks: slot -> block dict | None | Exception | list of those (one per call).
    Slots not in the map return None, like a skipped slot.
    """

    def __init__(self, head, blocks=None, slot_error=None):
        self.head = head
        self.blocks = dict(blocks or {})
        self.slot_error = slot_error
        self.block_calls = []

    async def get_slot(self):
        if self.slot_error:
            raise self.slot_error
        return self.head

    async def get_block(self, slot):
        self.block_calls.append(slot)
        out = self.blocks.get(slot)
        if isinstance(out, list):
            out = out.pop(0) if out else None
        if isinstance(out, BaseException):
            raise out
        return out

class FakeStore:
    def __init__(self, cursor=None, upsert_error=None, cursor_error=None):
        self.swaps = {}
        self.cursor = cursor
        self.upsert_error = upsert_error
        self.cursor_error = cursor_error
        self.cursor_writes = []

    async def get_cursor(self):
        return self.cursor

    async def set_cursor(self, cursor):
        if self.cursor_error:
            raise self.cursor_error
        self.cursor = cursor
        self.cursor_writes.append(cursor)

    async def upsert_swaps(self, swaps):
        if self.upsert_error:
            raise self.upsert_error
        n = 0
        for s in swaps:
            self.swaps[s.signature] = s
            n += 1
        return n

    async def count_swaps(self):
        return len(self.swaps)

@pytest.fixture
def store():
    return FakeStore()

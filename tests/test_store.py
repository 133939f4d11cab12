"""Row mapping for the Postgres store (no database needed)."""

from datetime import datetime, timezone
from decimal import Decimal

from xdex_indexer.parser_swap import ParsedSwap
from xdex_indexer.store import dedupe_by_signature, swap_row

from conftest import MINT_A, MINT_B

def _swap(sig, amount_in="100", block_time=1_700_000_000):
    return ParsedSwap(signature=sig, slot=9, block_time=block_time, success=False,
                      token_in_mint=MINT_A, amount_in=amount_in,
                      token_out_mint=MINT_B, amount_out="40")

def test_swap_row_column_order():
    row = swap_row(_swap("sig1"))
    assert row == (
        "sig1", 9, datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
        None, MINT_A, MINT_B, Decimal(100), Decimal(40), None, None, False,
    )

def test_huge_amounts_survive_as_decimal():
    big = str(10 ** 30 + 7)
    assert swap_row(_swap("s", amount_in=big))[6] == Decimal(big)

def test_missing_block_time():
    assert swap_row(_swap("s", block_time=None))[2] is None

def test_dedupe_keeps_last_and_drops_unsigned():
    a1, b, a2 = _swap("a", "1"), _swap("b"), _swap("a", "2")
    out = dedupe_by_signature([a1, b, _swap(None), a2])
    assert [s.signature for s in out] == ["a", "b"]
    assert out[0].amount_in == "2"

# xdex_indexer/store.py
# Postgres persistence: signature-keyed swap upserts + single-row indexer cursor.

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

import asyncpg

from .parser_swap import ParsedSwap

log = logging.getLogger(__name__)

CURSOR_ID = 1

SQL_CREATE = """
CREATE TABLE IF NOT EXISTS swaps (
    signature      TEXT PRIMARY KEY,
    slot           BIGINT NOT NULL,
    block_time     TIMESTAMPTZ,
    pool_address   TEXT,
    token_in_mint  TEXT,
    token_out_mint TEXT,
    amount_in      NUMERIC,
    amount_out     NUMERIC,
    price          NUMERIC,
    user_wallet    TEXT,
    success        BOOLEAN NOT NULL DEFAULT TRUE
);
CREATE INDEX IF NOT EXISTS idx_swaps_slot ON swaps(slot);
CREATE INDEX IF NOT EXISTS idx_swaps_block_time ON swaps(block_time DESC);

CREATE TABLE IF NOT EXISTS indexer_state (
    id                  SMALLINT PRIMARY KEY DEFAULT 1,
    last_processed_slot BIGINT,
    last_run            TIMESTAMPTZ,
    total_swaps         INTEGER
);
"""

SQL_UPSERT_SWAP = """
INSERT INTO swaps(signature, slot, block_time, pool_address, token_in_mint, token_out_mint,
                  amount_in, amount_out, price, user_wallet, success)
VALUES($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11)
ON CONFLICT(signature) DO UPDATE SET
  slot=EXCLUDED.slot,
  block_time=EXCLUDED.block_time,
  pool_address=EXCLUDED.pool_address,
  token_in_mint=EXCLUDED.token_in_mint,
  token_out_mint=EXCLUDED.token_out_mint,
  amount_in=EXCLUDED.amount_in,
  amount_out=EXCLUDED.amount_out,
  price=EXCLUDED.price,
  user_wallet=EXCLUDED.user_wallet,
  success=EXCLUDED.success;
"""

SQL_GET_CURSOR = """
SELECT last_processed_slot, last_run, total_swaps
FROM indexer_state
WHERE id=$1;
"""

SQL_SET_CURSOR = """
INSERT INTO indexer_state(id, last_processed_slot, last_run, total_swaps)
VALUES($1, $2, $3, $4)
ON CONFLICT(id) DO UPDATE SET
  last_processed_slot=EXCLUDED.last_processed_slot,
  last_run=EXCLUDED.last_run,
  total_swaps=EXCLUDED.total_swaps;
"""

SQL_COUNT_SWAPS = "SELECT COUNT(*) FROM swaps;"

@dataclass(frozen=True)
class IndexerCursor:
    last_processed_slot: int
    last_run: Optional[datetime] = None
    total_swaps: int = 0

def _numeric(v: Optional[str]) -> Optional[Decimal]:
    return Decimal(v) if v is not None else None

def _ts(block_time: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time is not None else None

def swap_row(s: ParsedSwap) -> tuple:
    return (
        s.signature,
        s.slot,
        _ts(s.block_time),
        s.pool_address,
        s.token_in_mint,
        s.token_out_mint,
        _numeric(s.amount_in),
        _numeric(s.amount_out),
        _numeric(s.price),
        s.user_wallet,
        s.success,
    )

def dedupe_by_signature(swaps: Iterable[ParsedSwap]) -> List[ParsedSwap]:
    # last occurrence wins, first-seen order kept
    by_sig = {}
    for s in swaps:
        if not s.signature:
            log.warning("dropping swap without signature at slot %s", s.slot)
            continue
        by_sig[s.signature] = s
    return list(by_sig.values())

class SwapStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @classmethod
    async def connect(cls, db_url: str, min_size: int = 1, max_size: int = 4) -> "SwapStore":
        pool = await asyncpg.create_pool(dsn=db_url, min_size=min_size, max_size=max_size)
        return cls(pool)

    async def close(self):
        await self.pool.close()

    async def ensure_schema(self):
        async with self.pool.acquire() as conn:
            await conn.execute(SQL_CREATE)

    async def get_cursor(self) -> Optional[IndexerCursor]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_CURSOR, CURSOR_ID)
        if not row or row["last_processed_slot"] is None:
            return None
        return IndexerCursor(
            last_processed_slot=int(row["last_processed_slot"]),
            last_run=row["last_run"],
            total_swaps=int(row["total_swaps"] or 0),
        )

    async def set_cursor(self, cursor: IndexerCursor):
        async with self.pool.acquire() as conn:
            await conn.execute(SQL_SET_CURSOR, CURSOR_ID, cursor.last_processed_slot,
                               cursor.last_run, cursor.total_swaps)

    async def upsert_swaps(self, swaps: Iterable[ParsedSwap]) -> int:
        rows = [swap_row(s) for s in dedupe_by_signature(swaps)]
        if not rows:
            return 0
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(SQL_UPSERT_SWAP, rows)
        return len(rows)

    async def count_swaps(self) -> int:
        async with self.pool.acquire() as conn:
            return int(await conn.fetchval(SQL_COUNT_SWAPS))

    async def list_tables(self) -> List[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT tablename
                FROM pg_tables
                WHERE schemaname='public'
                ORDER BY tablename
            """)
        return [r["tablename"] for r in rows]

# xdex_indexer/block_scanner.py
# Fetch one block per slot and parse every XDEX swap in it.
# Slot-level fetch failures never escape: the fetch policy decides whether to
# retry, and a slot that still cannot be fetched is treated as empty.

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .parser_swap import ParsedSwap, parse_xdex_swap
from .rpc_client import RpcError
from .xdex_config import XDEX_PROGRAM_ID

log = logging.getLogger(__name__)

FETCH_ERRORS = (RpcError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)

class SkipPolicy:
    """Single attempt; a failed slot is logged and skipped."""

    def __init__(self):
        self.failed_slots: List[int] = []

    async def fetch(self, rpc, slot: int) -> Optional[Dict[str, Any]]:
        try:
            return await rpc.get_block(slot)
        except FETCH_ERRORS as e:
            self._skip(slot, e)
            return None

    def _skip(self, slot: int, err: Exception):
        self.failed_slots.append(slot)
        log.warning("slot %d: fetch failed, skipping (%s)", slot, err)

class RetryPolicy(SkipPolicy):
    """
    Retry transient failures with exponential backoff, then skip. RPC errors
    that mark the slot as permanently absent (skipped, pruned) are not retried.
    """

    def __init__(self, retries: int = 2, backoff: float = 0.5):
        super().__init__()
        self.retries = max(0, retries)
        self.backoff = backoff

    async def fetch(self, rpc, slot: int) -> Optional[Dict[str, Any]]:
        delay = self.backoff
        for attempt in range(self.retries + 1):
            try:
                return await rpc.get_block(slot)
            except RpcError as e:
                if e.permanent:
                    log.debug("slot %d: no block (%s)", slot, e)
                    return None
                err = e
            except FETCH_ERRORS as e:
                err = e
            if attempt < self.retries:
                log.info("slot %d: fetch attempt %d failed (%s); retrying in %.1fs",
                         slot, attempt + 1, err, delay)
                await asyncio.sleep(delay)
                delay *= 2
        self._skip(slot, err)
        return None

def make_policy(retries: int, backoff: float = 0.5) -> SkipPolicy:
    if retries <= 0:
        return SkipPolicy()
    return RetryPolicy(retries=retries, backoff=backoff)

def parse_block(block: Optional[Dict[str, Any]], slot: int,
                program_id: str = XDEX_PROGRAM_ID) -> List[ParsedSwap]:
    if not isinstance(block, dict):
        return []
    txs = block.get("transactions")
    if not isinstance(txs, list) or not txs:
        return []
    block_time = block.get("blockTime")
    swaps = []
    for tx in txs:
        if not isinstance(tx, dict):
            continue
        try:
            parsed = parse_xdex_swap(tx, slot=slot, block_time=block_time, program_id=program_id)
        except Exception:
            log.exception("slot %d: unparsable transaction skipped", slot)
            continue
        if parsed:
            swaps.append(parsed)
    return swaps

async def scan_slot(rpc, slot: int, policy: Optional[SkipPolicy] = None,
                    program_id: str = XDEX_PROGRAM_ID) -> List[ParsedSwap]:
    policy = policy or SkipPolicy()
    block = await policy.fetch(rpc, slot)
    return parse_block(block, slot, program_id)

async def scan_range(rpc, start_slot: int, end_slot: int, policy: Optional[SkipPolicy] = None,
                     program_id: str = XDEX_PROGRAM_ID) -> List[ParsedSwap]:
    # strictly sequential: one block fetch completes before the next starts
    policy = policy or SkipPolicy()
    swaps: List[ParsedSwap] = []
    for slot in range(start_slot, end_slot + 1):
        swaps.extend(await scan_slot(rpc, slot, policy, program_id))
    return swaps

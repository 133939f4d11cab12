# xdex_indexer/indexer.py
# One ingestion run: resolve slot window -> scan -> normalise -> validate ->
# commit (swap upsert, then cursor advance) -> summary.

import asyncio
import enum
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .block_scanner import SkipPolicy, scan_range
from .parser_swap import ParsedSwap, normalize_swap
from .scheduler import BOOTSTRAP_LAG, MODE_CONTINUE, SlotWindow, resolve_window
from .store import IndexerCursor
from .validator import validate_swaps
from .xdex_config import XDEX_PROGRAM_ID

log = logging.getLogger(__name__)

class Stage(str, enum.Enum):
    # caller authorisation happens in the HTTP layer before a run starts
    FETCHING_HEAD   = "fetching_head"
    RANGE_RESOLVED  = "range_resolved"
    SCANNING        = "scanning"
    VALIDATED       = "validated"
    PERSISTED       = "persisted"
    CURSOR_ADVANCED = "cursor_advanced"
    REPORTED        = "reported"
    CAUGHT_UP       = "caught_up"
    FAILED          = "failed"

def _now_utc():
    return datetime.now(timezone.utc)

async def persist_swaps(store, window: SlotWindow, swaps: List[ParsedSwap]) -> Optional[str]:
    """
    Upsert validated swaps by signature. A write failure is logged and
    returned as a message instead of raised, so the caller still advances
    the cursor: progress is defined by successful scanning, and the window
    can be re-ingested later with a tail run.
    """
    if not swaps:
        return None
    try:
        written = await store.upsert_swaps(swaps)
    except Exception as e:
        err = str(e) or e.__class__.__name__
        log.error("swap upsert failed for slots %d-%d (%d swaps): %s",
                  window.start, window.end, len(swaps), err)
        return err
    log.info("Upserted %d swaps", written)
    return None

async def advance_cursor(store, window: SlotWindow, swap_count: int,
                         now: Optional[datetime] = None) -> IndexerCursor:
    cursor = IndexerCursor(
        last_processed_slot=window.end,
        last_run=now or _now_utc(),
        total_swaps=swap_count,
    )
    await store.set_cursor(cursor)
    return cursor

def _note(window: SlotWindow) -> str:
    if window.end < window.head:
        return f"Behind by {window.behind} slots"
    return "Caught up to head"

async def run_indexer(rpc, store, limit: int = 200, mode: str = MODE_CONTINUE,
                      policy: Optional[SkipPolicy] = None,
                      program_id: str = XDEX_PROGRAM_ID,
                      bootstrap_lag: int = BOOTSTRAP_LAG) -> Dict[str, Any]:
    started = time.monotonic()
    policy = policy or SkipPolicy()
    failed_before = len(policy.failed_slots)
    stage = Stage.FETCHING_HEAD

    try:
        head = await rpc.get_slot()
        cursor = None if mode != MODE_CONTINUE else await store.get_cursor()
        window = resolve_window(
            head,
            cursor.last_processed_slot if cursor else None,
            mode=mode,
            budget=limit,
            bootstrap_lag=bootstrap_lag,
        )
        stage = Stage.RANGE_RESOLVED

        if window.empty:
            stage = Stage.CAUGHT_UP
            log.info("already caught up (cursor=%s head=%d)",
                     cursor.last_processed_slot if cursor else None, head)
            return {"success": True, "message": "Already caught up", "current_slot": head}

        log.info("Slots %d -> %d (head %d, mode %s)", window.start, window.end, head, mode)
        stage = Stage.SCANNING
        swaps = await scan_range(rpc, window.start, window.end, policy, program_id)
        log.info("Found %d raw swaps", len(swaps))

        checked = validate_swaps(normalize_swap(s) for s in swaps)
        stage = Stage.VALIDATED
        log.info("Valid swaps: %d", len(checked.valid))

        write_error = await persist_swaps(store, window, checked.valid)
        stage = Stage.PERSISTED
        await advance_cursor(store, window, len(checked.valid))
        stage = Stage.CURSOR_ADVANCED

        duration_ms = int((time.monotonic() - started) * 1000)
        stage = Stage.REPORTED
        return {
            "success": True,
            "slots_processed": window.size,
            "slots_failed": len(policy.failed_slots) - failed_before,
            "swaps_found": len(swaps),
            "valid_swaps": len(checked.valid),
            "invalid_swaps": checked.rejected,
            "start_slot": window.start,
            "end_slot": window.end,
            "current_slot": head,
            "duration": f"{duration_ms}ms",
            "note": _note(window),
            "write_error": write_error,
        }
    except Exception as e:
        log.exception("indexer run failed in state %s", stage.value)
        return {"success": False, "error": str(e) or e.__class__.__name__,
                "stage": Stage.FAILED.value, "failed_in": stage.value}

async def run_with_timeout(rpc, store, timeout: Optional[float], **kw) -> Dict[str, Any]:
    # a timeout cancels the in-flight fetch; the cursor has not moved yet
    if not timeout:
        return await run_indexer(rpc, store, **kw)
    try:
        return await asyncio.wait_for(run_indexer(rpc, store, **kw), timeout)
    except asyncio.TimeoutError:
        log.error("indexer run exceeded %.1fs; cursor not advanced", timeout)
        return {"success": False, "error": f"run timed out after {timeout:.0f}s", "stage": Stage.FAILED.value}

# xdex_indexer/xdex_runner.py
# Unified runner: diagnostics + one-shot / looped ingestion + HTTP trigger.
# Requires: asyncpg, aiohttp, websockets, orjson, python-dotenv.

import asyncio, sys, signal, contextlib, argparse, logging
from datetime import datetime, timezone
from typing import Dict, Optional

import websockets
import orjson

from .block_scanner import make_policy
from .indexer import run_with_timeout
from .rpc_client import RpcClient
from .scheduler import MODE_CONTINUE, MODE_TAIL
from .server import IndexerApi, start_server
from .store import SwapStore
from .xdex_config import load_env

log = logging.getLogger("xdex_runner")

###############################################################################
# Diagnostics
###############################################################################

LOG_LIMIT = 5

def _build_logs_sub_request(pid, subid):
    return {
        "jsonrpc":"2.0",
        "id": subid,
        "method":"logsSubscribe",
        "params":[
            {"mentions":[pid]},
            {"commitment":"confirmed"}
        ]
    }

async def diag_ws_check(rpc_ws: str, pid: str, limit: int = LOG_LIMIT, timeout: float = 30.0) -> int:
    printed = 0
    async with websockets.connect(rpc_ws, max_size=20_000_000) as ws:
        await ws.send(orjson.dumps(_build_logs_sub_request(pid, 1)))

        while printed < limit:
            raw = await asyncio.wait_for(ws.recv(), timeout)
            try:
                msg = orjson.loads(raw)
            except orjson.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("method") == "logsNotification":
                v = msg.get("params",{}).get("result",{})
                sig = v.get("value",{}).get("signature","?")
                logs = v.get("value",{}).get("logs",[])
                slot = v.get("context",{}).get("slot")
                printed += 1
                print(f"[DIAG] LOG#{printed} slot={slot} sig={sig[:8]}... lines={len(logs)}")
    return printed

async def run_diag():
    cfg = load_env()
    print("[DIAG] Checking DB…")
    store = await SwapStore.connect(cfg["db_url"], max_size=1)
    try:
        await store.ensure_schema()
        tables = await store.list_tables()
        print(f"[DIAG] DB OK. Tables: {tables}")
        cursor = await store.get_cursor()
        print(f"[DIAG] Cursor: {cursor.last_processed_slot if cursor else 'none'}")
    finally:
        await store.close()

    print(f"[DIAG] Checking RPC {cfg['rpc_http']}…")
    async with RpcClient(cfg["rpc_http"], cfg["commitment"], cfg["rpc_timeout"]) as rpc:
        slot = await rpc.get_slot()
    print(f"[DIAG] RPC OK. Head slot {slot}")

    if not cfg["rpc_ws"]:
        print("[DIAG] RPC_PRIMARY not set; skipping WebSocket check.")
        return
    print("[DIAG] Checking WebSocket feed…")
    n = await diag_ws_check(cfg["rpc_ws"], cfg["xdex_program"])
    print(f"[DIAG] WS OK. Received {n} XDEX logs.")

###############################################################################
# Health monitor (DB-centric)
###############################################################################

class Health:
    def __init__(self, store: SwapStore):
        self.store = store
        self.snap: Dict[str, str] = {}

    async def tick(self):
        try:
            n_swaps = await self.store.count_swaps()
            cursor  = await self.store.get_cursor()
        except Exception as e:
            self.snap = {"db": f"DOWN: {e}"}
            return

        def ago(ts: Optional[datetime]) -> str:
            if not ts: return "n/a"
            delta = datetime.now(timezone.utc) - ts
            return f"{int(delta.total_seconds())}s ago"

        self.snap = {
            "db": "OK",
            "swaps": str(n_swaps),
            "cursor": str(cursor.last_processed_slot) if cursor else "none",
            "last_run": ago(cursor.last_run if cursor else None),
            "last_batch": str(cursor.total_swaps) if cursor else "0",
        }

    def print(self):
        parts = [f"{k}={v}" for k, v in self.snap.items()]
        print("[HEALTH] " + " | ".join(parts))

###############################################################################
# Modes
###############################################################################

def _run_kwargs(cfg, limit: Optional[int], mode: str):
    return dict(
        limit=limit or cfg["max_slots"],
        mode=mode,
        policy=make_policy(cfg["fetch_retries"], cfg["fetch_backoff"]),
        program_id=cfg["xdex_program"],
        bootstrap_lag=cfg["bootstrap_lag"],
    )

async def run_once(limit: Optional[int], tail: bool) -> int:
    cfg = load_env()
    store = await SwapStore.connect(cfg["db_url"])
    try:
        await store.ensure_schema()
        async with RpcClient(cfg["rpc_http"], cfg["commitment"], cfg["rpc_timeout"]) as rpc:
            res = await run_with_timeout(rpc, store, cfg["run_timeout"],
                                         **_run_kwargs(cfg, limit, MODE_TAIL if tail else MODE_CONTINUE))
    finally:
        await store.close()
    print(orjson.dumps(res, option=orjson.OPT_INDENT_2).decode())
    return 0 if res.get("success") else 1

def _stop_event() -> asyncio.Event:
    loop = asyncio.get_running_loop()
    stop_ev = asyncio.Event()
    for s in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(s, stop_ev.set)
    return stop_ev

async def run_loop(limit: Optional[int]):
    cfg = load_env()
    store = await SwapStore.connect(cfg["db_url"])
    health = Health(store)
    stop_ev = _stop_event()
    try:
        await store.ensure_schema()
        async with RpcClient(cfg["rpc_http"], cfg["commitment"], cfg["rpc_timeout"]) as rpc:
            print(f"[RUNNER] ingesting every {cfg['loop_interval']:.0f}s.")
            while not stop_ev.is_set():
                res = await run_with_timeout(rpc, store, cfg["run_timeout"],
                                             **_run_kwargs(cfg, limit, MODE_CONTINUE))
                if res.get("success"):
                    log.info("run ok: %s", res.get("note") or res.get("message"))
                else:
                    log.error("run failed: %s", res.get("error"))
                await health.tick()
                health.print()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_ev.wait(), cfg["loop_interval"])
    finally:
        print("[RUNNER] stopping…")
        await store.close()

async def run_serve():
    cfg = load_env()
    if not cfg["cron_secret"]:
        log.warning("CRON_SECRET is empty; every trigger will be rejected")
    store = await SwapStore.connect(cfg["db_url"])
    stop_ev = _stop_event()
    try:
        await store.ensure_schema()
        async with RpcClient(cfg["rpc_http"], cfg["commitment"], cfg["rpc_timeout"]) as rpc:
            runner = await start_server(IndexerApi(cfg, rpc, store), cfg["http_host"], cfg["http_port"])
            try:
                await stop_ev.wait()
            finally:
                await runner.cleanup()
    finally:
        await store.close()

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="XDEX indexer runner: diagnostics + ingestion + HTTP trigger"
    )
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("diag", help="One-shot sanity checks (DB + RPC + WS)")

    p_once = sub.add_parser("once", help="Run a single ingestion pass and print the summary")
    p_once.add_argument("--limit", type=int, default=None, help="Slots per run (default INDEXER_MAX_SLOTS)")
    p_once.add_argument("--tail", action="store_true", help="Re-scan the most recent window, ignoring the cursor")

    p_loop = sub.add_parser("loop", help="Ingest on a fixed interval with a health line per tick")
    p_loop.add_argument("--limit", type=int, default=None)

    sub.add_parser("serve", help="Serve the bearer-authorised HTTP trigger")

    return p

def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
    parser = build_argparser()
    args = parser.parse_args()

    # default to diag if no command provided
    if not args.cmd or args.cmd == "diag":
        return asyncio.run(run_diag())
    elif args.cmd == "once":
        sys.exit(asyncio.run(run_once(args.limit, args.tail)))
    elif args.cmd == "loop":
        return asyncio.run(run_loop(args.limit))
    elif args.cmd == "serve":
        return asyncio.run(run_serve())
    else:
        parser.print_help()
        sys.exit(2)

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("xdex_runner: stop")

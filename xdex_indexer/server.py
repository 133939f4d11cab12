# xdex_indexer/server.py
# HTTP trigger for the indexer (cron hits GET /api/indexer once a minute).

import hmac
import logging
from typing import Any, Dict, Optional

import orjson
from aiohttp import web

from .block_scanner import make_policy
from .indexer import run_with_timeout
from .scheduler import MODE_CONTINUE, MODE_TAIL

log = logging.getLogger(__name__)

def _dumps(obj) -> str:
    return orjson.dumps(obj).decode()

def json_response(data: Dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)

def _positive_int(raw) -> Optional[int]:
    try:
        v = int(raw)
    except (TypeError, ValueError):
        return None
    return v if v > 0 else None

def _truthy(raw) -> bool:
    return str(raw).strip().lower() in ("1", "true", "yes")

class IndexerApi:
    def __init__(self, cfg: Dict[str, Any], rpc, store):
        self.cfg = cfg
        self.rpc = rpc
        self.store = store
        self.app = web.Application()
        self.app.add_routes([
            web.get("/api/indexer", self.handle_index),
            web.post("/api/indexer", self.handle_action),
        ])

    def authorized(self, request: web.Request) -> bool:
        secret = self.cfg.get("cron_secret") or ""
        if not secret:
            return False
        got = request.headers.get("Authorization", "")
        return hmac.compare_digest(got.encode(), f"Bearer {secret}".encode())

    def _params(self, request: web.Request, body: Optional[Dict[str, Any]] = None):
        body = body or {}
        q = request.query
        limit = _positive_int(body.get("limit", q.get("limit"))) or self.cfg["max_slots"]
        tail = _truthy(body.get("tail", q.get("tail", "")))
        mode = str(body.get("mode", q.get("mode", ""))).strip().lower()
        if tail or mode == MODE_TAIL:
            return limit, MODE_TAIL
        return limit, MODE_CONTINUE

    async def _run(self, request: web.Request, body: Optional[Dict[str, Any]] = None) -> web.Response:
        if not self.authorized(request):
            log.warning("indexer: unauthorized trigger from %s", request.remote)
            return json_response({"error": "Unauthorized"}, status=401)

        limit, mode = self._params(request, body)
        log.info("indexer: triggered (limit=%d, mode=%s)", limit, mode)
        res = await run_with_timeout(
            self.rpc, self.store, self.cfg.get("run_timeout"),
            limit=limit,
            mode=mode,
            policy=make_policy(self.cfg.get("fetch_retries", 0), self.cfg.get("fetch_backoff", 0.5)),
            program_id=self.cfg["xdex_program"],
            bootstrap_lag=self.cfg.get("bootstrap_lag", 60),
        )
        return json_response(res, status=200 if res.get("success") else 500)

    async def handle_index(self, request: web.Request) -> web.Response:
        return await self._run(request)

    async def handle_action(self, request: web.Request) -> web.Response:
        try:
            body = await request.json(loads=orjson.loads)
        except ValueError:
            return json_response({"error": "invalid json body"}, status=400)
        if not isinstance(body, dict):
            return json_response({"error": "invalid json body"}, status=400)

        action = body.get("action")
        if action == "test":
            try:
                slot = await self.rpc.get_slot()
            except Exception as e:
                log.error("indexer: rpc check failed: %s", e)
                return json_response({"ok": False, "error": str(e)}, status=502)
            return json_response({"ok": True, "slot": slot, "rpc": self.cfg["rpc_http"]})

        if action == "index-now":
            return await self._run(request, body)

        return json_response({"error": "Unknown action"}, status=400)

async def start_server(api: IndexerApi, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(api.app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("indexer API listening on %s:%d", host, port)
    return runner

# xdex_indexer/rpc_client.py
# Thin JSON-RPC client for the X1 ledger node (getSlot / getBlock).

import itertools
from typing import Any, Dict, List, Optional

import aiohttp
import orjson

HEADERS = {"Content-Type": "application/json"}

# JSON-RPC codes meaning the block will never be served for this slot
SLOT_SKIPPED            = -32007
SLOT_MISSING_LONG_TERM  = -32009
BLOCK_CLEANED_UP        = -32001
PERMANENT_BLOCK_ERRORS  = {SLOT_SKIPPED, SLOT_MISSING_LONG_TERM, BLOCK_CLEANED_UP}

class RpcError(Exception):
    def __init__(self, code: Optional[int], message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message

    @property
    def permanent(self) -> bool:
        return self.code in PERMANENT_BLOCK_ERRORS

class RpcClient:
    def __init__(self, url: str, commitment: str = "confirmed", timeout_sec: float = 30.0):
        self.url = url
        self.commitment = commitment
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "RpcClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def call(self, method: str, params: List[Any]) -> Any:
        if not self._session:
            raise RuntimeError("RPC session is not initialized")
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        async with self._session.post(self.url, headers=HEADERS, data=orjson.dumps(payload)) as r:
            r.raise_for_status()
            data = orjson.loads(await r.read())
        if not isinstance(data, dict):
            raise RpcError(None, "malformed response")
        err = data.get("error")
        if err:
            if isinstance(err, dict):
                raise RpcError(err.get("code"), str(err.get("message", "")))
            raise RpcError(None, str(err))
        return data.get("result")

    async def get_slot(self) -> int:
        return int(await self.call("getSlot", [{"commitment": self.commitment}]))

    async def get_block(self, slot: int) -> Optional[Dict[str, Any]]:
        return await self.call("getBlock", [slot, {
            "encoding": "json",
            "maxSupportedTransactionVersion": 0,
            "transactionDetails": "full",
            "rewards": False,
            "commitment": self.commitment,
        }])

from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    pass


class JsonRpcClient:
    """Minimal Ethereum JSON-RPC client over HTTP."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: list[Any]) -> Any:
        request_id = next(self._ids)
        resp = await self._client.post(
            self.url,
            json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params},
        )
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise RpcError(f"Malformed {method} reply: {payload!r}")
        if payload.get("error") is not None:
            raise RpcError(f"{method} failed: {payload['error']}")
        if "result" not in payload:
            raise RpcError(f"{method} reply has no result: {payload!r}")
        return payload["result"]

    async def block_number(self) -> int:
        return parse_quantity(await self.call("eth_blockNumber", []))

    async def get_logs(
        self,
        address: str,
        topics: list[str],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        result = await self.call(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "topics": topics,
                    "fromBlock": hex(from_block),
                    "toBlock": hex(to_block),
                }
            ],
        )
        if not isinstance(result, list):
            raise RpcError(f"eth_getLogs returned {type(result).__name__}")
        return [log for log in result if isinstance(log, dict)]

    async def eth_call(self, to: str, data: str) -> str:
        result = await self.call("eth_call", [{"to": to, "data": data}, "latest"])
        if not isinstance(result, str):
            raise RpcError(f"eth_call returned {type(result).__name__}")
        return result


def parse_quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise RpcError(f"Not a JSON-RPC quantity: {value!r}")

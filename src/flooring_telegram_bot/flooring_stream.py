from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
import websockets
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from .rpc import JsonRpcClient, RpcError, parse_quantity
from .types import RawEvent

logger = logging.getLogger(__name__)

FRAGMENT_NFT_SIGNATURE = "FragmentNft(address,address,address,uint256[])"
FRAGMENT_NFT_TOPIC = "0x" + keccak(text=FRAGMENT_NFT_SIGNATURE).hex()


class EventStreamError(RuntimeError):
    """The chain subscription is gone; the process should exit and be restarted."""


class FragmentEventStream:
    """Ordered stream of FragmentNft events emitted by the Flooring contract.

    With a starting block the stream first replays historical logs over HTTP,
    up to the head observed once the live subscription is open, then yields
    live logs above that head.
    """

    def __init__(
        self,
        ws_url: str,
        rpc: JsonRpcClient,
        contract_address: str,
        starting_block: int = 0,
        block_range: int = 2000,
    ) -> None:
        self.ws_url = ws_url
        self.rpc = rpc
        self.contract_address = contract_address.lower()
        self.starting_block = starting_block
        self.block_range = max(block_range, 1)

    async def events(self) -> AsyncIterator[RawEvent]:
        try:
            async with websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20) as ws:
                await ws.send(json.dumps(self._subscribe_request()))
                subscription_id = await self._await_subscription(ws)
                logger.info(
                    "Subscribed to FragmentNft logs contract=%s subscription=%s",
                    self.contract_address,
                    subscription_id,
                )

                replayed_to = 0
                if self.starting_block > 0:
                    replayed_to = await self.rpc.block_number()
                    async for event in self._replay(self.starting_block, replayed_to):
                        yield event
                else:
                    logger.info("Starting from latest block")

                async for raw in ws:
                    for log in extract_subscription_logs(raw, subscription_id):
                        event = parse_fragment_log(log)
                        if event is None or event.block_number <= replayed_to:
                            continue
                        yield event
        except (
            websockets.WebSocketException,
            OSError,
            asyncio.TimeoutError,
            httpx.HTTPError,
            RpcError,
        ) as exc:
            raise EventStreamError(f"FragmentNft subscription failed: {exc}") from exc

        raise EventStreamError("FragmentNft subscription closed by the node")

    def _subscribe_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": [
                "logs",
                {"address": self.contract_address, "topics": [FRAGMENT_NFT_TOPIC]},
            ],
        }

    @staticmethod
    async def _await_subscription(ws: Any) -> str:
        async for raw in ws:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict) or payload.get("id") != 1:
                continue
            if payload.get("error") is not None:
                raise RpcError(f"eth_subscribe failed: {payload['error']}")
            return str(payload.get("result"))
        raise EventStreamError("Connection closed before eth_subscribe was acknowledged")

    async def _replay(self, from_block: int, to_block: int) -> AsyncIterator[RawEvent]:
        logger.info("Starting from block %d (replaying to %d)", from_block, to_block)
        start = from_block
        while start <= to_block:
            end = min(start + self.block_range - 1, to_block)
            logs = await self.rpc.get_logs(
                self.contract_address, [FRAGMENT_NFT_TOPIC], start, end
            )
            for log in sorted(logs, key=_log_position):
                event = parse_fragment_log(log)
                if event is not None:
                    yield event
            start = end + 1


def extract_subscription_logs(raw: str | bytes, subscription_id: str) -> list[dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, dict) or payload.get("method") != "eth_subscription":
        return []
    params = payload.get("params")
    if not isinstance(params, dict) or str(params.get("subscription")) != subscription_id:
        return []
    result = params.get("result")
    if isinstance(result, dict):
        return [result]
    if isinstance(result, list):
        return [log for log in result if isinstance(log, dict)]
    return []


def parse_fragment_log(log: dict[str, Any]) -> RawEvent | None:
    if log.get("removed"):
        logger.warning("Skipping removed log tx=%s", log.get("transactionHash"))
        return None

    topics = log.get("topics") or []
    if len(topics) != 4 or str(topics[0]).lower() != FRAGMENT_NFT_TOPIC:
        return None

    data = str(log.get("data") or "0x")
    try:
        (token_ids,) = decode(["uint256[]"], bytes.fromhex(data.removeprefix("0x")))
        block_number = parse_quantity(log.get("blockNumber"))
        log_index = parse_quantity(log.get("logIndex", 0))
    except (DecodingError, ValueError, RpcError) as exc:
        logger.warning("Undecodable FragmentNft log tx=%s: %s", log.get("transactionHash"), exc)
        return None

    tx_hash = str(log.get("transactionHash") or "").lower()
    if not token_ids:
        logger.warning("Skipping FragmentNft event without token ids tx=%s", tx_hash)
        return None

    return RawEvent(
        operator=_topic_address(topics[1]),
        on_behalf_of=_topic_address(topics[2]),
        collection_address=_topic_address(topics[3]),
        token_ids=tuple(int(token_id) for token_id in token_ids),
        block_number=block_number,
        tx_hash=tx_hash,
        log_index=log_index,
    )


def _topic_address(topic: str) -> str:
    return "0x" + str(topic)[-40:].lower()


def _log_position(log: dict[str, Any]) -> tuple[int, int]:
    try:
        return parse_quantity(log.get("blockNumber")), parse_quantity(log.get("logIndex", 0))
    except (ValueError, RpcError):
        return 0, 0

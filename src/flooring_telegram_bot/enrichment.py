from __future__ import annotations

import logging
from typing import Any

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from .formatting import build_dexscreener_link, build_valuation_link
from .rpc import JsonRpcClient, RpcError
from .types import ReferenceToken, TopBid, Valuation

logger = logging.getLogger(__name__)

COLLECTION_INFO_SELECTOR = "0x" + keccak(text="collectionInfo(address)")[:4].hex()
# fragmentToken, freeNftLength, lastUpdatedBucket, nextKeyId, activeSafeBoxCnt,
# infiniteCnt, nextActivityId
COLLECTION_INFO_OUTPUTS = ["address", "uint256", "uint64", "uint64", "uint64", "uint64", "uint64"]
NATIVE_CURRENCY = "0x0000000000000000000000000000000000000000"


class ValuationEnricher:
    """Per-token appraisal from DeepNFTValue."""

    def __init__(
        self,
        api_base: str,
        api_key: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def valuation(self, slug: str, token_id: int) -> Valuation | None:
        try:
            resp = await self._client.get(
                f"{self.api_base}/v1/tokens/{slug}/{token_id}",
                headers={"Authorization": self.api_key, "accept": "application/json"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Valuation request failed slug=%s token=%s: %s", slug, token_id, exc)
            return None

        valuation = payload.get("valuation") if isinstance(payload, dict) else None
        if not isinstance(valuation, dict):
            logger.warning("Error getting valuation slug=%s token=%s payload=%s", slug, token_id, payload)
            return None

        price = _to_float(valuation.get("price"))
        if price is None:
            logger.warning(
                "Unparseable valuation price slug=%s token=%s price=%r",
                slug,
                token_id,
                valuation.get("price"),
            )
            return None

        return Valuation(url=build_valuation_link(slug, token_id), price=price)


class BidEnricher:
    """Best active buy order for a token from the Reservoir aggregator."""

    def __init__(
        self,
        api_base: str,
        api_key: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def top_bid(self, collection_address: str, token_id: int) -> TopBid:
        try:
            resp = await self._client.get(
                f"{self.api_base}/orders/bids/v6",
                params={
                    "token": f"{collection_address}:{token_id}",
                    "status": "active",
                    "normalizeRoyalties": "true",
                    "sortBy": "price",
                    "limit": 1,
                    "displayCurrency": NATIVE_CURRENCY,
                },
                headers={"x-api-key": self.api_key, "accept": "application/json"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Top bid request failed collection=%s token=%s: %s", collection_address, token_id, exc
            )
            return TopBid(unavailable=True)

        orders = payload.get("orders") if isinstance(payload, dict) else None
        if not isinstance(orders, list):
            logger.warning(
                "Unexpected bids payload collection=%s token=%s payload=%s",
                collection_address,
                token_id,
                payload,
            )
            return TopBid(unavailable=True)

        return self._pick_top_bid(orders)

    @staticmethod
    def _pick_top_bid(orders: list[Any]) -> TopBid:
        best = TopBid()
        for order in orders:
            if not isinstance(order, dict):
                continue
            price = _to_float(_dig(order, "price", "netAmount", "decimal"))
            if price is None or price <= best.price:
                continue
            source = order.get("source") if isinstance(order.get("source"), dict) else {}
            best = TopBid(
                url=str(source.get("url") or ""),
                source_name=str(source.get("name") or ""),
                price=price,
            )
        return best


class ReferenceTokenEnricher:
    """Resolves a collection's fragment token and prices one NFT through it.

    ``derived_price = market_price * peg_ratio / 10 ** peg_decimals`` where the
    market price is the token's native (wei) price reported by Moralis.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        reader_address: str,
        api_base: str,
        api_key: str,
        peg_ratio: int,
        peg_decimals: int,
        chain: str = "eth",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc = rpc
        self.reader_address = reader_address
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.peg_ratio = peg_ratio
        self.peg_decimals = peg_decimals
        self.chain = chain
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def reference_token(self, collection_address: str) -> ReferenceToken:
        try:
            token_address = await self.fragment_token(collection_address)
        except (httpx.HTTPError, RpcError, DecodingError, ValueError) as exc:
            logger.warning("collectionInfo call failed collection=%s: %s", collection_address, exc)
            return ReferenceToken(dex_link=None, name="Fragment token", derived_price=None)

        dex_link = build_dexscreener_link(token_address)
        try:
            resp = await self._client.get(
                f"{self.api_base}/erc20/{token_address}/price",
                params={"chain": self.chain},
                headers={"X-API-Key": self.api_key, "accept": "application/json"},
            )
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Token price request failed token=%s: %s", token_address, exc)
            return ReferenceToken(dex_link=dex_link, name="Fragment token", derived_price=None)

        name = "Fragment token"
        market_price = None
        if isinstance(payload, dict):
            name = str(payload.get("tokenName") or name)
            market_price = _to_float(_dig(payload, "nativePrice", "value"))
        if market_price is None:
            logger.warning("Token price missing token=%s payload=%s", token_address, payload)
            return ReferenceToken(dex_link=dex_link, name=name, derived_price=None)

        return ReferenceToken(
            dex_link=dex_link,
            name=name,
            derived_price=self.derive_price(market_price),
        )

    async def fragment_token(self, collection_address: str) -> str:
        data = COLLECTION_INFO_SELECTOR + encode(["address"], [collection_address]).hex()
        raw = await self.rpc.eth_call(self.reader_address, data)
        decoded = decode(COLLECTION_INFO_OUTPUTS, bytes.fromhex(raw.removeprefix("0x")))
        return str(decoded[0]).lower()

    def derive_price(self, market_price: float) -> float:
        return market_price * self.peg_ratio / 10**self.peg_decimals


def _dig(node: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

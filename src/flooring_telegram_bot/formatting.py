from __future__ import annotations

from collections.abc import Sequence
from html import escape

from .types import (
    EnrichedToken,
    MarketLinks,
    Notification,
    RawEvent,
    ReferenceToken,
    TopBid,
    Valuation,
)

UNAVAILABLE = "unavailable"


def format_eth(value: float) -> str:
    return f"{value:.4f}"


def build_etherscan_link(tx_hash: str) -> str:
    return f"https://etherscan.io/tx/{tx_hash}"


def build_dexscreener_link(token_address: str) -> str:
    return f"https://dexscreener.com/ethereum/{token_address}"


def build_valuation_link(slug: str, token_id: int) -> str:
    return f"https://deepnftvalue.com/asset/{slug}/{token_id}"


def build_market_links(collection_address: str, token_id: int) -> MarketLinks:
    return MarketLinks(
        blur=f"https://blur.io/asset/{collection_address}/{token_id}",
        flooring=f"https://www.flooring.io/nft-details/{collection_address}/{token_id}",
        opensea_pro=f"https://pro.opensea.io/nft/{collection_address}/{token_id}",
    )


def arbitrage_delta(token: EnrichedToken, reference: ReferenceToken) -> float | None:
    if reference.derived_price is None:
        return None
    return token.top_bid.price - reference.derived_price


def compose_notification(
    event: RawEvent,
    slug: str | None,
    reference: ReferenceToken,
    tokens: Sequence[EnrichedToken],
) -> Notification:
    """Assemble the notification for one event; performs no I/O and never raises."""
    deltas = [arbitrage_delta(token, reference) for token in tokens]
    total_profit = None if any(d is None for d in deltas) else sum(deltas)
    return Notification(
        etherscan_link=build_etherscan_link(event.tx_hash),
        collection_header=slug or event.collection_address,
        reference_token=reference,
        tokens=tuple(tokens),
        total_profit=total_profit,
    )


def _anchor(url: str | None, label: str) -> str:
    if not url:
        return escape(label)
    return f'<a href="{escape(url, quote=True)}">{escape(label)}</a>'


def _reference_line(reference: ReferenceToken) -> str:
    name = escape(reference.name)
    if reference.derived_price is None:
        return f"{name} Derived Price: {UNAVAILABLE}"
    return f"{name} Derived Price: " + _anchor(
        reference.dex_link, f"{format_eth(reference.derived_price)} ETH"
    )


def _valuation_line(valuation: Valuation | None) -> str:
    if valuation is None:
        return f"DeepNFTValue valuation: {UNAVAILABLE}"
    return "DeepNFTValue valuation: " + _anchor(valuation.url, f"{format_eth(valuation.price)} ETH")


def _bid_line(top_bid: TopBid) -> str:
    if top_bid.unavailable:
        return f"Top Bid: {UNAVAILABLE}"
    if top_bid.is_empty:
        return "Top Bid: no active bids"
    label = f"{format_eth(top_bid.price)} ETH"
    if top_bid.source_name:
        label += f" on {top_bid.source_name}"
    return "Top Bid (including fees): " + _anchor(top_bid.url, label)


def _profit_line(prefix: str, value: float | None) -> str:
    if value is None:
        return f"{prefix}: {UNAVAILABLE}"
    return f"{prefix}: {format_eth(value)} ETH"


def format_notification(notification: Notification) -> str:
    reference = notification.reference_token
    lines = [
        _anchor(notification.etherscan_link, "View transaction on Etherscan"),
        f"Collection: {escape(notification.collection_header)}",
        _reference_line(reference),
        "",
    ]

    for token in notification.tokens:
        links = token.links
        lines.extend(
            [
                f"Token {token.token_id}: "
                + " -- ".join(
                    [
                        _anchor(links.blur, "Blur"),
                        _anchor(links.flooring, "Flooring"),
                        _anchor(links.opensea_pro, "OpenSea Pro"),
                    ]
                ),
                _valuation_line(token.valuation),
                _bid_line(token.top_bid),
                _profit_line("Estimated Arbitrage Profit", arbitrage_delta(token, reference)),
                "",
            ]
        )

    lines.append(_profit_line("Total Estimated Profit", notification.total_profit))
    return "\n".join(lines)

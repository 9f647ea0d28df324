from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class RawEvent:
    operator: str
    on_behalf_of: str
    collection_address: str
    token_ids: tuple[int, ...]
    block_number: int
    tx_hash: str
    log_index: int = 0


@dataclass(frozen=True)
class MarketLinks:
    blur: str
    flooring: str
    opensea_pro: str


@dataclass(frozen=True)
class Valuation:
    url: str
    price: float


@dataclass(frozen=True)
class TopBid:
    url: str = ""
    source_name: str = ""
    price: float = 0.0
    # Lookup failed; price stays 0 so the profit arithmetic is unchanged.
    unavailable: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.unavailable and self.price == 0 and not self.source_name


@dataclass(frozen=True)
class EnrichedToken:
    token_id: int
    links: MarketLinks
    valuation: Valuation | None = None
    top_bid: TopBid = field(default_factory=TopBid)


@dataclass(frozen=True)
class ReferenceToken:
    dex_link: str | None
    name: str
    derived_price: float | None


@dataclass(frozen=True)
class Notification:
    etherscan_link: str
    collection_header: str
    reference_token: ReferenceToken
    tokens: tuple[EnrichedToken, ...]
    total_profit: float | None


class DeliveryResult(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    FAILED = "failed"

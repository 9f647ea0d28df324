from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .config import Settings
from .enrichment import BidEnricher, ReferenceTokenEnricher, ValuationEnricher
from .flooring_stream import FragmentEventStream
from .formatting import build_market_links, compose_notification, format_notification
from .rpc import JsonRpcClient
from .slugs import CollectionResolver
from .telegram_notifier import CooldownNotifier, TelegramNotifier
from .types import (
    DeliveryResult,
    EnrichedToken,
    Notification,
    RawEvent,
    ReferenceToken,
    TopBid,
    Valuation,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Metrics:
    events_seen: int = 0
    notifications_sent: int = 0
    notifications_suppressed: int = 0
    notifications_failed: int = 0
    lookups_degraded: int = 0


class FragmentAlertService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.metrics = Metrics()
        self.rpc = JsonRpcClient(settings.http_rpc_url, timeout=settings.http_timeout_seconds)
        self.stream = FragmentEventStream(
            ws_url=settings.wss_rpc_url,
            rpc=self.rpc,
            contract_address=settings.flooring_address,
            starting_block=settings.starting_block,
            block_range=settings.log_block_range,
        )
        self.resolver = CollectionResolver(settings.extra_collection_slugs)
        self.valuations = ValuationEnricher(
            settings.deepnftvalue_api_base,
            settings.deep_api_key,
            timeout=settings.http_timeout_seconds,
        )
        self.bids = BidEnricher(
            settings.reservoir_api_base,
            settings.reservoir_api_key,
            timeout=settings.http_timeout_seconds,
        )
        self.reference = ReferenceTokenEnricher(
            rpc=self.rpc,
            reader_address=settings.flooring_reader_address,
            api_base=settings.moralis_api_base,
            api_key=settings.moralis_api_key,
            peg_ratio=settings.peg_ratio,
            peg_decimals=settings.peg_decimals,
            timeout=settings.http_timeout_seconds,
        )
        self.notifier = CooldownNotifier(
            TelegramNotifier(
                settings.telegram_bot_token,
                settings.telegram_chat_id,
                timeout=settings.http_timeout_seconds,
            ),
            cooldown_seconds=settings.delivery_cooldown_seconds,
        )

    async def run(self) -> None:
        health_task = asyncio.create_task(self._health_loop())
        try:
            async for event in self.stream.events():
                await self.handle_event(event)
        finally:
            health_task.cancel()
            await asyncio.gather(health_task, return_exceptions=True)
            await self.notifier.close()
            await self.valuations.close()
            await self.bids.close()
            await self.reference.close()
            await self.rpc.close()

    async def handle_event(self, event: RawEvent) -> DeliveryResult:
        self.metrics.events_seen += 1
        logger.info(
            "FragmentNft tx=%s block=%d collection=%s tokens=%d",
            event.tx_hash,
            event.block_number,
            event.collection_address,
            len(event.token_ids),
        )

        notification = await self.build_notification(event)
        text = format_notification(notification)
        result = await self.notifier.notify(
            text, notification.total_profit, self.settings.minimum_profit
        )

        if result is DeliveryResult.SENT:
            self.metrics.notifications_sent += 1
        elif result is DeliveryResult.SUPPRESSED:
            self.metrics.notifications_suppressed += 1
        else:
            self.metrics.notifications_failed += 1
        logger.info(
            "Processed tx=%s result=%s total_profit=%s",
            event.tx_hash,
            result.value,
            notification.total_profit,
        )
        return result

    async def build_notification(self, event: RawEvent) -> Notification:
        slug = self.resolver.resolve(event.collection_address)
        # Caps in-flight lookups for this event.
        limit = asyncio.Semaphore(max(self.settings.enrichment_concurrency, 1))
        reference, *tokens = await asyncio.gather(
            self._reference_for(event.collection_address, limit),
            *(
                self._enrich_token(event.collection_address, slug, token_id, limit)
                for token_id in event.token_ids
            ),
        )
        return compose_notification(event, slug, reference, tokens)

    async def _reference_for(
        self, collection_address: str, limit: asyncio.Semaphore
    ) -> ReferenceToken:
        unavailable = ReferenceToken(dex_link=None, name="Fragment token", derived_price=None)
        reference = await self._bounded(
            lambda: self.reference.reference_token(collection_address),
            unavailable,
            f"reference collection={collection_address}",
            limit,
        )
        if reference.derived_price is None:
            self.metrics.lookups_degraded += 1
        return reference

    async def _enrich_token(
        self,
        collection_address: str,
        slug: str | None,
        token_id: int,
        limit: asyncio.Semaphore,
    ) -> EnrichedToken:
        # Valuation is keyed by slug; unknown collections never hit the service.
        if slug:
            valuation_call = self._bounded(
                lambda: self.valuations.valuation(slug, token_id),
                None,
                f"valuation token={token_id}",
                limit,
            )
        else:
            valuation_call = _absent()
        valuation, top_bid = await asyncio.gather(
            valuation_call,
            self._bounded(
                lambda: self.bids.top_bid(collection_address, token_id),
                TopBid(unavailable=True),
                f"top bid token={token_id}",
                limit,
            ),
        )
        if slug and valuation is None:
            self.metrics.lookups_degraded += 1
        if top_bid.unavailable:
            self.metrics.lookups_degraded += 1
        return EnrichedToken(
            token_id=token_id,
            links=build_market_links(collection_address, token_id),
            valuation=valuation,
            top_bid=top_bid,
        )

    async def _bounded(
        self,
        call: Callable[[], Awaitable[T]],
        fallback: T,
        label: str,
        limit: asyncio.Semaphore,
    ) -> T:
        async with limit:
            try:
                return await asyncio.wait_for(
                    call(), timeout=self.settings.enrichment_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Lookup timed out %s", label)
            except Exception as exc:
                logger.warning("Lookup failed %s: %s", label, exc)
        return fallback

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.health_log_interval_seconds)
            logger.info(
                (
                    "health events_seen=%d sent=%d suppressed=%d failed=%d "
                    "lookups_degraded=%d cooldown_remaining=%.1f"
                ),
                self.metrics.events_seen,
                self.metrics.notifications_sent,
                self.metrics.notifications_suppressed,
                self.metrics.notifications_failed,
                self.metrics.lookups_degraded,
                self.notifier.cooldown_remaining(),
            )


async def _absent() -> Valuation | None:
    return None

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from .types import DeliveryResult

logger = logging.getLogger(__name__)


class TelegramSendError(RuntimeError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class MessageChannel(Protocol):
    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


class TelegramNotifier:
    """Single-shot sendMessage to one chat; raises TelegramSendError on any failure."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 15.0) -> None:
        self.chat_id = chat_id
        self._url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self._client = httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, text: str) -> None:
        try:
            response = await self._client.post(
                self._url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as exc:
            raise TelegramSendError(f"Telegram request failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = 2.0
            try:
                payload = response.json()
                retry_after = float(payload.get("parameters", {}).get("retry_after", retry_after))
            except (ValueError, TypeError, AttributeError):
                pass
            raise TelegramSendError("Telegram rate limited", retry_after=retry_after)

        try:
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TelegramSendError(f"Telegram send failed: {exc}") from exc
        if not isinstance(data, dict) or not data.get("ok", False):
            raise TelegramSendError(f"Telegram send failed: {data}")


class CooldownNotifier:
    """Profit gate in front of a channel, with a pause after failed deliveries.

    A failed message is dropped. Until the cooldown has elapsed, the next
    delivery waits instead of hitting the channel.
    """

    def __init__(
        self,
        channel: MessageChannel,
        cooldown_seconds: float = 35.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.channel = channel
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self._cooldown_until = 0.0

    async def close(self) -> None:
        await self.channel.close()

    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    async def notify(
        self,
        text: str,
        total_profit: float | None,
        minimum_profit: float,
    ) -> DeliveryResult:
        if total_profit is None:
            logger.info("Profit unknown, not sending message")
            return DeliveryResult.SUPPRESSED
        if total_profit <= minimum_profit:
            logger.info(
                "Profit too low, not sending message profit=%.6f minimum=%.6f",
                total_profit,
                minimum_profit,
            )
            return DeliveryResult.SUPPRESSED

        remaining = self.cooldown_remaining()
        if remaining > 0:
            logger.info("Delivery cooling down, waiting %.1fs", remaining)
            await self._sleep(remaining)

        try:
            await self.channel.send(text)
        except Exception as exc:
            retry_after = exc.retry_after if isinstance(exc, TelegramSendError) else None
            pause = max(self.cooldown_seconds, retry_after or 0.0)
            self._cooldown_until = self._clock() + pause
            logger.exception("Error sending message, cooling down %.1fs: %s", pause, exc)
            return DeliveryResult.FAILED

        logger.info("Message sent profit=%.6f", total_profit)
        return DeliveryResult.SENT

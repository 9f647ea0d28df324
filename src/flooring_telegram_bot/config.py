from __future__ import annotations

import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_FLOORING_ADDRESS = "0x3eb879cc9a0ef4c6f1d870a40ae187768c278da2"
DEFAULT_FLOORING_READER_ADDRESS = "0x8ad7892f15e6a3a1c0eecf83c30f414227434540"

# One NFT is fragmented into PEG_RATIO fungible tokens with PEG_DECIMALS decimals.
DEFAULT_PEG_RATIO = 1_000_000
DEFAULT_PEG_DECIMALS = 18


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_chat_id: str
    wss_rpc_url: str
    http_rpc_url: str
    flooring_address: str
    flooring_reader_address: str
    starting_block: int
    minimum_profit: float
    moralis_api_key: str
    reservoir_api_key: str
    deep_api_key: str
    moralis_api_base: str
    reservoir_api_base: str
    deepnftvalue_api_base: str
    peg_ratio: int
    peg_decimals: int
    delivery_cooldown_seconds: float
    http_timeout_seconds: float
    enrichment_timeout_seconds: float
    enrichment_concurrency: int
    log_block_range: int
    health_log_interval_seconds: int
    log_level: str
    extra_collection_slugs: dict[str, str]


def _required(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _optional_slugs(name: str) -> dict[str, str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"{name} must decode to a JSON object")
    return {str(address).lower(): str(slug) for address, slug in parsed.items()}


def load_settings() -> Settings:
    load_dotenv()
    starting_block = _optional_int("STARTING_BLOCK", 0)
    if starting_block < 0:
        raise ValueError("STARTING_BLOCK must not be negative")
    return Settings(
        telegram_bot_token=_required("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", "").strip() or "@flooring_monitor",
        wss_rpc_url=_required("WSS_RPC"),
        http_rpc_url=_required("HTTP_RPC"),
        flooring_address=os.getenv("FLOORING_ADDRESS", DEFAULT_FLOORING_ADDRESS).strip().lower(),
        flooring_reader_address=os.getenv(
            "FLOORING_READER_ADDRESS", DEFAULT_FLOORING_READER_ADDRESS
        ).strip().lower(),
        starting_block=starting_block,
        minimum_profit=_optional_float("MINIMUM_PROFIT", 0.0),
        moralis_api_key=os.getenv("MORALIS_API_KEY", "").strip(),
        reservoir_api_key=os.getenv("RESERVOIR_API_KEY", "").strip(),
        deep_api_key=os.getenv("DEEP_API_KEY", "").strip(),
        moralis_api_base=os.getenv(
            "MORALIS_API_BASE", "https://deep-index.moralis.io/api/v2.2"
        ).strip(),
        reservoir_api_base=os.getenv("RESERVOIR_API_BASE", "https://api.reservoir.tools").strip(),
        deepnftvalue_api_base=os.getenv(
            "DEEPNFTVALUE_API_BASE", "https://api.deepnftvalue.com"
        ).strip(),
        peg_ratio=_optional_int("PEG_RATIO", DEFAULT_PEG_RATIO),
        peg_decimals=_optional_int("PEG_DECIMALS", DEFAULT_PEG_DECIMALS),
        delivery_cooldown_seconds=_optional_float("DELIVERY_COOLDOWN_SECONDS", 35.0),
        http_timeout_seconds=_optional_float("HTTP_TIMEOUT_SECONDS", 15.0),
        enrichment_timeout_seconds=_optional_float("ENRICHMENT_TIMEOUT_SECONDS", 20.0),
        enrichment_concurrency=_optional_int("ENRICHMENT_CONCURRENCY", 8),
        log_block_range=_optional_int("LOG_BLOCK_RANGE", 2000),
        health_log_interval_seconds=_optional_int("HEALTH_LOG_INTERVAL_SECONDS", 60),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        extra_collection_slugs=_optional_slugs("COLLECTION_SLUGS"),
    )

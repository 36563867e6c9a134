"""
Source adapters — turn one upstream market-data endpoint into
(code → name) and (code → price) mappings.

Each source is described by a SourceConfig (field names, validation
strictness, relay chain) so TWSE and TPEx share one adapter class.
Relays are tried in order; a failure moves to the next relay and the
last relay's error propagates to the orchestrator.

Usage:
    adapter = SourceAdapter("tpex", config.sources.tpex)
    result = await adapter.fetch(fetcher, client)
    result.prices["6488"]  # 512.0
"""

import json
import math
import time
from typing import Any, Dict, Iterable, List
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from kite_tracker.config import RelayConfig, SourceConfig
from kite_tracker.sync.fetcher import (
    FallbackExhaustedError,
    MalformedPayloadError,
    ResilientFetcher,
    SyncError,
)

MISSING_PRICE_MARKERS = ("", "-")


class SourceResult(BaseModel):
    """Normalized output of one source."""

    source_id: str
    prices: Dict[str, float] = Field(default_factory=dict)
    names: Dict[str, str] = Field(default_factory=dict)
    relay: str = ""


def parse_price(raw: Any) -> float | None:
    """Parse an exchange price string such as "1,105.00".

    Returns None for "-", empty, unparseable, non-finite or non-positive values.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if text in MISSING_PRICE_MARKERS:
        return None
    try:
        price = float(text.replace(",", ""))
    except ValueError:
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def build_relay_url(relay: RelayConfig, upstream_url: str, now_ms: int | None = None) -> str:
    """Wrap ``upstream_url`` for a relay; ``{ts}`` is a cache-busting millisecond stamp."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return relay.url_template.format(url=quote(upstream_url, safe=""), ts=now_ms)


def unwrap_relay_payload(relay: RelayConfig, payload: Any) -> Any:
    """Extract the upstream payload from a relay response.

    Wrapped relays put it in ``contents``, either as a JSON string
    (decoded a second time) or as an already-decoded value.
    """
    if relay.kind == "passthrough":
        return payload

    contents = payload.get("contents") if isinstance(payload, dict) else None
    if isinstance(contents, str):
        if not contents.strip():
            contents = None
        else:
            try:
                contents = json.loads(contents)
            except json.JSONDecodeError as e:
                raise MalformedPayloadError("備援代理回傳內容無法解析為 JSON") from e
    if contents is None:
        raise FallbackExhaustedError("備援代理回傳內容為空")
    return contents


def normalize_records(
    records: Iterable[Any], config: SourceConfig, source_id: str = ""
) -> SourceResult:
    """Map raw records onto code → name and code → price.

    A name is kept only when code and name are both present. Prices need a
    code, and additionally a name when ``config.price_requires_name`` is set.
    """
    result = SourceResult(source_id=source_id)
    skipped = 0

    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue

        code = str(record.get(config.code_field) or "").strip()
        name = str(record.get(config.name_field) or "").strip()
        if not code:
            skipped += 1
            continue

        if name:
            result.names[code] = name
        elif config.price_requires_name:
            skipped += 1
            continue

        price = parse_price(record.get(config.price_field))
        if price is not None:
            result.prices[code] = price

    if skipped:
        logger.debug("{}: skipped {} records without usable code/name", config.label, skipped)
    return result


class SourceAdapter:
    """One upstream source plus its relay fallback chain."""

    def __init__(self, source_id: str, config: SourceConfig) -> None:
        self.source_id = source_id
        self.config = config

    @property
    def label(self) -> str:
        return self.config.label

    async def fetch(self, fetcher: ResilientFetcher, client: httpx.AsyncClient) -> SourceResult:
        """Fetch and normalize this source, trying each relay in turn.

        Raises:
            SyncError: The last relay's classified failure.
        """
        records, relay_name = await self._fetch_records(fetcher, client)
        result = normalize_records(records, self.config, self.source_id)
        result.relay = relay_name
        logger.info(
            "{}: {} prices, {} names via {}",
            self.label,
            len(result.prices),
            len(result.names),
            relay_name,
        )
        return result

    async def _fetch_records(
        self, fetcher: ResilientFetcher, client: httpx.AsyncClient
    ) -> tuple[List[Any], str]:
        relays = self.config.relays
        if not relays:
            raise FallbackExhaustedError(f"{self.label} 未設定任何代理伺服器")

        for index, relay in enumerate(relays):
            try:
                url = build_relay_url(relay, self.config.url)
                payload = unwrap_relay_payload(relay, await fetcher.fetch(client, url))
                if not isinstance(payload, list):
                    raise MalformedPayloadError(
                        f"回傳資料格式非預期 (預期陣列，收到 {type(payload).__name__})"
                    )
                return payload, relay.name
            except SyncError as e:
                if index == len(relays) - 1:
                    raise
                logger.warning(
                    "{}: relay {} failed ({}), switching to {}",
                    self.label,
                    relay.name,
                    e,
                    relays[index + 1].name,
                )

        raise FallbackExhaustedError(f"{self.label} 所有代理伺服器皆失敗")


def build_adapters(sources: Iterable[tuple[str, SourceConfig]]) -> List[SourceAdapter]:
    """Create adapters for every enabled source, preserving order."""
    return [SourceAdapter(source_id, cfg) for source_id, cfg in sources if cfg.enabled]

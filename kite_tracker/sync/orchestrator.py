"""
Sync orchestrator — runs every source adapter concurrently and merges
their outcomes into one SyncStatus.

Sources settle independently: one failing never cancels or delays the
other. Failures become labelled lines in SyncStatus.errors, so callers
always get a well-formed status and decide what to apply.

Usage:
    status = await fetch_all_stock_prices()
    if status.errors:
        logger.warning("partial sync: {}", status.errors)
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from kite_tracker.config import AppConfig
from kite_tracker.sync.fetcher import ResilientFetcher
from kite_tracker.sync.sources import SourceAdapter, SourceResult, build_adapters

TAIPEI_TZ = timezone(timedelta(hours=8), name="UTC+8")
ORCHESTRATION_ERROR = "系統核心異常，請檢查網路狀態"


def format_date_tw(moment: datetime | None = None) -> str:
    """Format a timestamp as ``YYYY年MM月DD日 HH:MM:SS (UTC+8)``.

    Naive datetimes are taken to be UTC+8 already.
    """
    if moment is None:
        moment = datetime.now(TAIPEI_TZ)
    elif moment.tzinfo is not None:
        moment = moment.astimezone(TAIPEI_TZ)
    return moment.strftime("%Y年%m月%d日 %H:%M:%S") + " (UTC+8)"


class SyncStatus(BaseModel):
    """Merged result of one sync run.

    A code missing from ``prices`` means "no update", never zero.

    Frozen is shallow: fields cannot be reassigned, and validation copies
    the input maps so the status never aliases a caller's dicts. The maps
    themselves are plain dicts and consumers must treat them as read-only;
    ``apply_prices`` and ``merge_names`` only ever read them.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str
    prices: Dict[str, float] = Field(default_factory=dict)
    names: Dict[str, str] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class PriceSynchronizer:
    """Runs all configured sources and builds a SyncStatus.

    Usage:
        synchronizer = PriceSynchronizer(config)
        async with httpx.AsyncClient() as client:
            status = await synchronizer.sync(client)
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        fetcher: ResilientFetcher | None = None,
        adapters: List[SourceAdapter] | None = None,
    ) -> None:
        config = config or AppConfig()
        self._fetcher = fetcher or ResilientFetcher.from_config(config.sync)
        self._adapters = (
            adapters if adapters is not None else build_adapters(config.sources.items())
        )

    @property
    def adapters(self) -> List[SourceAdapter]:
        return list(self._adapters)

    async def sync(
        self, client: httpx.AsyncClient | None = None, now: datetime | None = None
    ) -> SyncStatus:
        """Fetch every source and merge. Never raises."""
        prices: Dict[str, float] = {}
        names: Dict[str, str] = {}
        errors: List[str] = []

        try:
            if client is None:
                async with httpx.AsyncClient(timeout=self._fetcher.timeout) as own_client:
                    outcomes = await self._gather(own_client)
            else:
                outcomes = await self._gather(client)

            for adapter, outcome in zip(self._adapters, outcomes):
                if isinstance(outcome, SourceResult):
                    prices.update(outcome.prices)
                    names.update(outcome.names)
                    continue
                message = str(outcome) or type(outcome).__name__
                errors.append(f"{adapter.label}: {message}")
                logger.error("Sync: {} failed: {!r}", adapter.label, outcome)

        except Exception as e:
            errors.append(ORCHESTRATION_ERROR)
            logger.exception("Sync: unexpected orchestration error: {}", e)

        status = SyncStatus(
            timestamp=format_date_tw(now),
            prices=prices,
            names=names,
            errors=errors,
        )
        logger.info(
            "Sync: {} prices, {} names, {} errors",
            len(status.prices),
            len(status.names),
            len(status.errors),
        )
        return status

    async def _gather(self, client: httpx.AsyncClient) -> List[SourceResult | BaseException]:
        """Run all adapters concurrently; failures are returned, not raised."""
        return await asyncio.gather(
            *(adapter.fetch(self._fetcher, client) for adapter in self._adapters),
            return_exceptions=True,
        )


async def fetch_all_stock_prices(
    client: httpx.AsyncClient | None = None,
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> SyncStatus:
    """One-shot sync across all enabled sources. Never raises."""
    return await PriceSynchronizer(config).sync(client, now=now)

"""
kite-tracker — entry point for the Taiwan equity portfolio tracker.

Loads the local portfolio, refreshes prices from TWSE / TPEx through
public relays, applies them to holdings, and saves the result.

Modes:
- Once: a single sync, then print a portfolio summary
- Snapshot: record current totals in the history
- Advise: ask the AI advisor about the saved portfolio
- Refresh (default): keep syncing every refresh.interval_seconds until interrupted

Usage:
    # Single sync
    python -m kite_tracker.main --config config/default.yaml --once

    # Settle today's totals into the history
    python -m kite_tracker.main --snapshot

    # Periodic refresh
    python -m kite_tracker.main --config config/default.yaml
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from kite_tracker.advisor.advisor import AdvisorBridge, TextGenerator
from kite_tracker.advisor.gemini import GeminiGenerator
from kite_tracker.config import AppConfig, load_config
from kite_tracker.portfolio.models import PortfolioState, Snapshot, take_snapshot
from kite_tracker.portfolio.store import PortfolioStore
from kite_tracker.scheduler.refresher import PriceRefresher
from kite_tracker.sync.orchestrator import PriceSynchronizer, SyncStatus, format_date_tw


def format_summary(state: PortfolioState, status: SyncStatus | None) -> str:
    """Plain-text portfolio summary for the terminal."""
    totals = state.totals
    lines = [
        f"Total budget:     {totals.total_budget:,.0f} TWD",
        f"Market value:     {totals.market_value:,.0f} TWD",
        f"Unrealized P/L:   {totals.total_profit:+,.0f} TWD",
        f"Available cash:   {totals.available_cash:,.0f} TWD",
        "",
    ]
    for h in state.holdings:
        name = h.name or state.stock_names.get(h.code, "")
        flags = " [TP]" if h.hit_take_profit else " [SL]" if h.hit_stop_loss else ""
        lines.append(
            f"{h.code:<6} {name:<8} {h.shares:>8,.0f} @ {h.current_price:>9,.2f}"
            f"  {h.profit:+,.0f} ({h.profit_pct:+.2f}%){flags}"
        )
    if status is not None:
        lines.append("")
        lines.append(f"Last sync: {status.timestamp}")
        for err in status.errors:
            lines.append(f"  ! {err}")
    return "\n".join(lines)


async def run_once(config: AppConfig) -> SyncStatus | None:
    """Sync once, save, and print the summary."""
    store = PortfolioStore(config.storage.path)
    refresher = PriceRefresher(PriceSynchronizer(config), store.load(), on_update=store.save)
    status = await refresher.refresh_once()
    print(format_summary(refresher.state, status))
    return status


def run_snapshot(config: AppConfig) -> Snapshot:
    """Record the current totals as a history entry, newest first."""
    store = PortfolioStore(config.storage.path)
    state = store.load()
    snapshot = take_snapshot(state.holdings, state.totals, state.wind, format_date_tw())
    store.save(state.model_copy(update={"history": [snapshot, *state.history]}))
    logger.info(
        "kite-tracker: snapshot saved ({} holdings, market value {:.0f})",
        snapshot.stock_count,
        snapshot.market_value,
    )
    print(f"Snapshot {snapshot.date}: {snapshot.market_value:,.0f} TWD ({snapshot.wind.name})")
    return snapshot


async def run_advise(config: AppConfig, generate: TextGenerator | None = None) -> str:
    """Ask the advisor about the saved portfolio and print its answer."""
    state = PortfolioStore(config.storage.path).load()
    bridge = AdvisorBridge(generate or GeminiGenerator(), config.advisor)
    text = await bridge.advise(state.holdings, state.totals, state.wind)
    print(text)
    return text


async def run_refresh_loop(config: AppConfig) -> None:
    """Refresh on an interval until SIGINT/SIGTERM."""
    store = PortfolioStore(config.storage.path)
    refresher = PriceRefresher(
        PriceSynchronizer(config),
        store.load(),
        interval=config.refresh.interval_seconds,
        run_immediately=config.refresh.run_immediately,
        on_update=store.save,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: SIGINT arrives as KeyboardInterrupt instead.
            pass

    refresher.start()
    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("kite-tracker: KeyboardInterrupt received")
    finally:
        await refresher.stop()
        logger.info("kite-tracker: stopped cleanly")


def setup_logging(config: AppConfig) -> None:
    """Configure loguru logging from config."""
    log_dir = Path(config.logging.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        sys.stderr,
        level=config.logging.level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:8}</level> | {message}",
    )
    logger.add(
        config.logging.file,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        encoding="utf-8",
    )


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="kite-tracker — Taiwan equity portfolio tracker")
    parser.add_argument(
        "--config",
        default="config/default.yaml",
        help="Path to config YAML",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync and print the portfolio summary",
    )
    mode.add_argument(
        "--snapshot",
        action="store_true",
        help="Append a snapshot of the current totals to the history",
    )
    mode.add_argument(
        "--advise",
        action="store_true",
        help="Ask the AI advisor about the saved portfolio (needs API_KEY)",
    )
    args = parser.parse_args()

    load_dotenv()

    config = load_config(args.config)
    setup_logging(config)

    logger.info("kite-tracker v0.1.0 starting")
    logger.info("Config: {}", args.config)

    if args.once:
        asyncio.run(run_once(config))
    elif args.snapshot:
        run_snapshot(config)
    elif args.advise:
        asyncio.run(run_advise(config))
    else:
        asyncio.run(run_refresh_loop(config))


if __name__ == "__main__":
    main()

"""
Price-merge policy — applies a SyncStatus onto holdings and the
cached name map without discarding stale-but-valid data.

A holding's price changes only when the status carries a usable price
for its code; names are merged additively. Applying the same status
twice yields the same state.
"""

import math
from typing import Any, Dict, List

from kite_tracker.portfolio.models import Holding, PortfolioState
from kite_tracker.sync.orchestrator import SyncStatus


def _usable_price(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def apply_prices(holdings: List[Holding], status: SyncStatus) -> List[Holding]:
    """Return a new holdings list with refreshed prices where available."""
    updated: List[Holding] = []
    for holding in holdings:
        latest = status.prices.get(holding.code.strip())
        if _usable_price(latest):
            updated.append(holding.model_copy(update={"current_price": float(latest)}))
        else:
            updated.append(holding)
    return updated


def merge_names(cache: Dict[str, str], names: Dict[str, str]) -> Dict[str, str]:
    """Add new names to the cache; existing codes are overwritten, none are dropped."""
    return {**cache, **{code: name for code, name in names.items() if name}}


def apply_sync_status(state: PortfolioState, status: SyncStatus) -> PortfolioState:
    """Apply prices and names from ``status`` onto a copy of ``state``."""
    return state.model_copy(
        update={
            "holdings": apply_prices(state.holdings, status),
            "stock_names": merge_names(state.stock_names, status.names),
        }
    )

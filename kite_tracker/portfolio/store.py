"""
Portfolio store — a small JSON key-value file holding holdings,
transactions, snapshot history, the selected mood and cached names.

The sync core never touches this store; callers load state, apply a
SyncStatus, and save it back.
"""

import json
from pathlib import Path
from typing import Any, Dict

from loguru import logger
from pydantic import ValidationError

from kite_tracker.portfolio.models import PortfolioState

STORAGE_KEYS = {
    "holdings": "portfolio_v3_stocks",
    "transactions": "portfolio_v3_trans",
    "history": "portfolio_v3_history",
    "wind_id": "portfolio_v3_wind",
    "stock_names": "cached_stock_names",
}


class PortfolioStore:
    """JSON-file key-value store for PortfolioState.

    Usage:
        store = PortfolioStore("data/portfolio.json")
        state = store.load()
        store.save(apply_sync_status(state, status))
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PortfolioState:
        """Read state from disk. Missing or unreadable keys fall back to defaults."""
        raw = self._read()
        data = {field: raw[key] for field, key in STORAGE_KEYS.items() if key in raw}
        try:
            return PortfolioState(**data)
        except ValidationError as e:
            logger.error("Store: invalid portfolio data in {}: {}", self._path, e)
            return PortfolioState()

    def save(self, state: PortfolioState) -> None:
        dumped = state.model_dump(mode="json")
        data = {key: dumped[field] for field, key in STORAGE_KEYS.items()}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("Store: failed to write {}: {}", self._path, e)
            raise
        logger.debug("Store: saved {} holdings to {}", len(state.holdings), self._path)

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Store: could not read {} ({}), starting empty", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store: {} is not a JSON object, starting empty", self._path)
            return {}
        return data

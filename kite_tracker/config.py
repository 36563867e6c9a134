"""
Pydantic-based configuration system for kite-tracker.

Loads configuration from YAML files with a default.yaml underneath.
Usage:
    from kite_tracker.config import load_config
    config = load_config("config/default.yaml")
"""

from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field


# ── Source Config ───────────────────────────────────────────────────────────


class RelayConfig(BaseModel):
    """One CORS relay in a source's fallback chain."""

    name: str
    url_template: str = Field(
        description="Relay URL with {url} (quoted upstream URL) and optional {ts} placeholders"
    )
    kind: Literal["passthrough", "wrapped"] = Field(
        default="passthrough",
        description="'wrapped' relays return the payload inside a 'contents' field",
    )


CORSPROXY = RelayConfig(name="corsproxy", url_template="https://corsproxy.io/?{url}")
ALLORIGINS = RelayConfig(
    name="allorigins",
    url_template="https://api.allorigins.win/get?url={url}&_={ts}",
    kind="wrapped",
)


class SourceConfig(BaseModel):
    """Per-source field mapping and validation strictness."""

    label: str = Field(description="Human-readable prefix used in SyncStatus.errors")
    url: str
    code_field: str
    name_field: str
    price_field: str
    price_requires_name: bool = Field(
        default=False, description="Record a price only when the record also has a name"
    )
    relays: List[RelayConfig] = [CORSPROXY]
    enabled: bool = True


class SourcesConfig(BaseModel):
    """Upstream market-data sources, queried concurrently in this order."""

    twse: SourceConfig = SourceConfig(
        label="證交所",
        url="https://openapi.twse.com.tw/v1/exchangeReport/STOCK_DAY_ALL",
        code_field="Code",
        name_field="Name",
        price_field="ClosingPrice",
    )
    tpex: SourceConfig = SourceConfig(
        label="櫃買中心",
        url="https://www.tpex.org.tw/openapi/v1/tpex_mainboard_quotes",
        code_field="SecuritiesCompanyCode",
        name_field="CompanyName",
        price_field="Close",
        price_requires_name=True,
        relays=[CORSPROXY, ALLORIGINS],
    )

    def items(self) -> List[tuple[str, SourceConfig]]:
        return [("twse", self.twse), ("tpex", self.tpex)]


# ── Sub-configs ─────────────────────────────────────────────────────────────


class SyncConfig(BaseModel):
    """Resilient fetcher parameters."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts per relay call")
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-attempt deadline")
    backoff_base_seconds: float = Field(
        default=1.5, ge=0, description="Delay before retry i is base * 2**i"
    )


class RefreshConfig(BaseModel):
    """Periodic price refresh."""

    interval_seconds: float = 300.0
    run_immediately: bool = True


class StorageConfig(BaseModel):
    """Local JSON key-value store for holdings and transactions."""

    path: str = "data/portfolio.json"


class AdvisorConfig(BaseModel):
    """Settings passed to the external text generator."""

    model: str = "gemini-3-flash-preview"
    temperature: float = 0.6
    max_output_tokens: int = 800


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "logs/kite_tracker.log"
    rotation: str = "10 MB"
    retention: str = "30 days"


# ── Root Config ─────────────────────────────────────────────────────────────


class AppConfig(BaseModel):
    """Root configuration for kite-tracker."""

    sync: SyncConfig = SyncConfig()
    sources: SourcesConfig = SourcesConfig()
    refresh: RefreshConfig = RefreshConfig()
    storage: StorageConfig = StorageConfig()
    advisor: AdvisorConfig = AdvisorConfig()
    logging: LoggingConfig = LoggingConfig()


# ── Config Loading ──────────────────────────────────────────────────────────


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: str | Path,
    default_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML, merging with defaults.

    Args:
        config_path: Path to the user config (e.g. config/local.yaml).
        default_path: Path to default config. Auto-detected if None.

    Returns:
        Fully resolved AppConfig instance.
    """
    config_path = Path(config_path)

    if default_path is None:
        default_path = config_path.parent / "default.yaml"

    base_data: Dict[str, Any] = {}
    if Path(default_path).exists():
        with open(default_path, "r", encoding="utf-8") as f:
            base_data = yaml.safe_load(f) or {}

    override_data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            override_data = yaml.safe_load(f) or {}

    # User config overrides defaults
    merged = _deep_merge(base_data, override_data)

    return AppConfig(**merged)

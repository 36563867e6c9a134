"""
Tests for kite_tracker/sync/sources.py.

Tests cover:
- Price string parsing ("1,234.5", "-", "", "abc", non-finite, non-positive)
- Record normalization for the lenient (TWSE) and strict (TPEx) policies
- Relay URL construction and wrapped-relay unwrapping
- Adapter fallback chain (primary relay failure → secondary relay)
"""

import json
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from kite_tracker.config import ALLORIGINS, CORSPROXY, SourcesConfig
from kite_tracker.sync.fetcher import (
    DisguisedFailureError,
    FallbackExhaustedError,
    FetchTimeoutError,
    MalformedPayloadError,
    TransientHTTPError,
)
from kite_tracker.sync.sources import (
    SourceAdapter,
    build_adapters,
    build_relay_url,
    normalize_records,
    parse_price,
    unwrap_relay_payload,
)

SOURCES = SourcesConfig()


# ── Fixtures ────────────────────────────────────────────────────────────────


class FakeFetcher:
    """Stands in for ResilientFetcher; routes by relay host."""

    def __init__(self, route: Callable[[str], Any]) -> None:
        self.urls: list[str] = []
        self._route = route

    async def fetch(self, client: Any, url: str) -> Any:
        self.urls.append(url)
        result = self._route(url)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def twse() -> SourceAdapter:
    return SourceAdapter("twse", SOURCES.twse)


@pytest.fixture
def tpex() -> SourceAdapter:
    return SourceAdapter("tpex", SOURCES.tpex)


TPEX_RECORDS = [
    {"SecuritiesCompanyCode": "6488", "CompanyName": "環球晶", "Close": "512.00"},
    {"SecuritiesCompanyCode": "8069", "CompanyName": "元太", "Close": "-"},
]


# ── parse_price ─────────────────────────────────────────────────────────────


class TestParsePrice:
    """Exchange price string parsing."""

    def test_thousands_separator(self) -> None:
        assert parse_price("1,234.5") == 1234.5

    def test_plain_number(self) -> None:
        assert parse_price("58.70") == 58.7

    def test_numeric_value(self) -> None:
        assert parse_price(12.5) == 12.5

    @pytest.mark.parametrize("raw", ["-", "", "  ", None, "abc", "nan", "inf", "0", "0.00", "-3"])
    def test_no_price(self, raw: Any) -> None:
        assert parse_price(raw) is None


# ── normalize_records ───────────────────────────────────────────────────────


class TestNormalizeRecords:
    """Per-source record validation."""

    def test_twse_record(self) -> None:
        result = normalize_records(
            [{"Code": " 2330 ", "Name": " 台積電 ", "ClosingPrice": "1,105.00"}], SOURCES.twse
        )
        assert result.prices == {"2330": 1105.0}
        assert result.names == {"2330": "台積電"}

    def test_twse_price_without_name(self) -> None:
        result = normalize_records(
            [{"Code": "0050", "Name": "", "ClosingPrice": "190.5"}], SOURCES.twse
        )
        assert result.prices == {"0050": 190.5}
        assert result.names == {}

    def test_tpex_requires_name_for_price(self) -> None:
        result = normalize_records(
            [{"SecuritiesCompanyCode": "6488", "CompanyName": "", "Close": "512"}], SOURCES.tpex
        )
        assert result.prices == {}
        assert result.names == {}

    def test_dash_price_keeps_name(self) -> None:
        result = normalize_records(TPEX_RECORDS, SOURCES.tpex)
        assert result.prices == {"6488": 512.0}
        assert result.names == {"6488": "環球晶", "8069": "元太"}

    def test_missing_code_skipped(self) -> None:
        result = normalize_records(
            [{"Code": "", "Name": "無代號", "ClosingPrice": "10"}, "garbage", None], SOURCES.twse
        )
        assert result.prices == {}
        assert result.names == {}

    def test_unparseable_price_dropped_silently(self) -> None:
        result = normalize_records(
            [
                {"Code": "1101", "Name": "台泥", "ClosingPrice": "abc"},
                {"Code": "2317", "Name": "鴻海", "ClosingPrice": "210.5"},
            ],
            SOURCES.twse,
        )
        assert result.prices == {"2317": 210.5}
        assert set(result.names) == {"1101", "2317"}


# ── Relays ──────────────────────────────────────────────────────────────────


class TestRelays:
    """Relay URL building and payload unwrapping."""

    def test_corsproxy_url(self) -> None:
        url = build_relay_url(CORSPROXY, "https://openapi.twse.com.tw/v1/a?b=1")
        assert url == "https://corsproxy.io/?https%3A%2F%2Fopenapi.twse.com.tw%2Fv1%2Fa%3Fb%3D1"

    def test_allorigins_url_has_cache_buster(self) -> None:
        url = build_relay_url(ALLORIGINS, "https://www.tpex.org.tw/x", now_ms=1700000000000)
        assert url == "https://api.allorigins.win/get?url=https%3A%2F%2Fwww.tpex.org.tw%2Fx&_=1700000000000"

    def test_passthrough_unchanged(self) -> None:
        assert unwrap_relay_payload(CORSPROXY, [1, 2]) == [1, 2]

    def test_wrapped_string_contents_decoded(self) -> None:
        payload = {"contents": json.dumps(TPEX_RECORDS), "status": {"http_code": 200}}
        assert unwrap_relay_payload(ALLORIGINS, payload) == TPEX_RECORDS

    def test_wrapped_decoded_contents(self) -> None:
        assert unwrap_relay_payload(ALLORIGINS, {"contents": TPEX_RECORDS}) == TPEX_RECORDS

    @pytest.mark.parametrize("payload", [{"contents": ""}, {"contents": None}, {}, [], "x"])
    def test_wrapped_empty_contents(self, payload: Any) -> None:
        with pytest.raises(FallbackExhaustedError, match="備援代理回傳內容為空"):
            unwrap_relay_payload(ALLORIGINS, payload)

    @pytest.mark.parametrize("payload", [{"contents": "[]"}, {"contents": []}])
    def test_wrapped_empty_list_is_a_valid_answer(self, payload: Any) -> None:
        assert unwrap_relay_payload(ALLORIGINS, payload) == []

    def test_wrapped_invalid_string(self) -> None:
        with pytest.raises(MalformedPayloadError):
            unwrap_relay_payload(ALLORIGINS, {"contents": "<html>oops"})


# ── Adapter ─────────────────────────────────────────────────────────────────


class TestSourceAdapter:
    """Fetch + fallback chain."""

    async def test_twse_single_relay(self, twse: SourceAdapter) -> None:
        fetcher = FakeFetcher(
            lambda url: [{"Code": "2330", "Name": "台積電", "ClosingPrice": "1,105.00"}]
        )
        result = await twse.fetch(fetcher, MagicMock())
        assert result.prices == {"2330": 1105.0}
        assert result.relay == "corsproxy"
        assert len(fetcher.urls) == 1
        assert fetcher.urls[0].startswith("https://corsproxy.io/?")

    async def test_twse_failure_propagates(self, twse: SourceAdapter) -> None:
        fetcher = FakeFetcher(lambda url: TransientHTTPError(503, "伺服器忙碌 (HTTP 503)"))
        with pytest.raises(TransientHTTPError):
            await twse.fetch(fetcher, MagicMock())
        assert len(fetcher.urls) == 1

    async def test_tpex_fallback_decodes_string_contents(self, tpex: SourceAdapter) -> None:
        def route(url: str) -> Any:
            if url.startswith("https://corsproxy.io/"):
                return FetchTimeoutError("請求超時 (超過 30 秒)")
            return {"contents": json.dumps(TPEX_RECORDS)}

        fetcher = FakeFetcher(route)
        result = await tpex.fetch(fetcher, MagicMock())

        assert result.prices == {"6488": 512.0}
        assert result.names["8069"] == "元太"
        assert result.relay == "allorigins"
        assert fetcher.urls[0].startswith("https://corsproxy.io/")
        assert fetcher.urls[1].startswith("https://api.allorigins.win/get?url=")

    async def test_tpex_primary_success_skips_fallback(self, tpex: SourceAdapter) -> None:
        fetcher = FakeFetcher(lambda url: TPEX_RECORDS)
        result = await tpex.fetch(fetcher, MagicMock())
        assert result.relay == "corsproxy"
        assert len(fetcher.urls) == 1

    async def test_tpex_non_list_primary_falls_back(self, tpex: SourceAdapter) -> None:
        def route(url: str) -> Any:
            if url.startswith("https://corsproxy.io/"):
                return {"error": "rate limited"}
            return {"contents": TPEX_RECORDS}

        result = await tpex.fetch(FakeFetcher(route), MagicMock())
        assert result.prices == {"6488": 512.0}

    async def test_tpex_both_relays_fail(self, tpex: SourceAdapter) -> None:
        def route(url: str) -> Any:
            if url.startswith("https://corsproxy.io/"):
                return DisguisedFailureError("html")
            return FetchTimeoutError("請求超時 (超過 30 秒)")

        with pytest.raises(FetchTimeoutError, match="請求超時"):
            await tpex.fetch(FakeFetcher(route), MagicMock())

    async def test_tpex_secondary_empty_contents(self, tpex: SourceAdapter) -> None:
        def route(url: str) -> Any:
            if url.startswith("https://corsproxy.io/"):
                return FetchTimeoutError("timeout")
            return {"contents": ""}

        with pytest.raises(FallbackExhaustedError):
            await tpex.fetch(FakeFetcher(route), MagicMock())

    async def test_tpex_secondary_empty_list_succeeds(self, tpex: SourceAdapter) -> None:
        def route(url: str) -> Any:
            if url.startswith("https://corsproxy.io/"):
                return FetchTimeoutError("timeout")
            return {"contents": "[]"}

        result = await tpex.fetch(FakeFetcher(route), MagicMock())
        assert result.prices == {}
        assert result.names == {}
        assert result.relay == "allorigins"


class TestBuildAdapters:
    """Adapter table construction."""

    def test_default_order(self) -> None:
        adapters = build_adapters(SOURCES.items())
        assert [a.source_id for a in adapters] == ["twse", "tpex"]
        assert [a.label for a in adapters] == ["證交所", "櫃買中心"]

    def test_disabled_source_skipped(self) -> None:
        sources = SourcesConfig(tpex=SOURCES.tpex.model_copy(update={"enabled": False}))
        assert [a.source_id for a in build_adapters(sources.items())] == ["twse"]

"""
Tests for kite_tracker/advisor/advisor.py and kite_tracker/advisor/gemini.py.

Tests cover:
- Prompt rendering (mood, totals, holdings, cash ratio)
- Generator invocation with configured parameters
- User-facing messages for missing key, invalid key, empty output
- Gemini generator request parameters
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kite_tracker.advisor.advisor import AdvisorBridge, build_prompt
from kite_tracker.advisor.gemini import GeminiGenerator
from kite_tracker.config import AdvisorConfig
from kite_tracker.portfolio.models import Holding, PortfolioTotals, get_wind_mood

# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def holdings() -> list[Holding]:
    return [
        Holding(
            name="台積電", code="2330", shares=1000, cost=900, current_price=1105, period="長期"
        )
    ]


@pytest.fixture
def totals() -> PortfolioTotals:
    return PortfolioTotals(
        total_budget=2_000_000,
        invested_capital=900_000,
        market_value=1_105_000,
        available_cash=1_100_000,
        total_profit=205_000,
    )


@pytest.fixture
def api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_KEY", "test-key")


# ── Prompt ──────────────────────────────────────────────────────────────────


class TestBuildPrompt:
    """Prompt rendering."""

    def test_contains_portfolio_data(self, holdings: list[Holding], totals: PortfolioTotals) -> None:
        prompt = build_prompt(holdings, totals, get_wind_mood(1))
        assert "強風 (風箏飛高高)" in prompt
        assert "- 台積電(2330): 週期 長期, 成本 900, 現價 1105" in prompt
        assert "總入金（總本金）：2000000 TWD" in prompt
        assert "未實現損益：+205000 TWD" in prompt
        assert "目前現金佔比：55.0%" in prompt

    def test_empty_portfolio(self) -> None:
        prompt = build_prompt([], PortfolioTotals(), get_wind_mood(4))
        assert "(目前無持股)" in prompt
        assert "目前現金佔比：0.0%" in prompt


# ── Bridge ──────────────────────────────────────────────────────────────────


class TestAdvisorBridge:
    """Generator call and failure messages."""

    async def test_returns_generated_text(
        self, api_key: None, holdings: list[Holding], totals: PortfolioTotals
    ) -> None:
        generate = AsyncMock(return_value="建議續抱")
        bridge = AdvisorBridge(generate, AdvisorConfig(temperature=0.3, max_output_tokens=500))

        text = await bridge.advise(holdings, totals, get_wind_mood(4))

        assert text == "建議續抱"
        prompt = generate.await_args.args[0]
        assert "台積電(2330)" in prompt
        assert generate.await_args.kwargs == {
            "model": "gemini-3-flash-preview",
            "temperature": 0.3,
            "max_output_tokens": 500,
        }

    async def test_missing_api_key(
        self, monkeypatch: pytest.MonkeyPatch, holdings: list[Holding], totals: PortfolioTotals
    ) -> None:
        monkeypatch.delenv("API_KEY", raising=False)
        generate = AsyncMock()
        text = await AdvisorBridge(generate).advise(holdings, totals, get_wind_mood(4))
        assert "API Key" in text
        generate.assert_not_awaited()

    async def test_invalid_key_message(
        self, api_key: None, holdings: list[Holding], totals: PortfolioTotals
    ) -> None:
        generate = AsyncMock(side_effect=RuntimeError("400 API key not valid. Please pass a valid key"))
        text = await AdvisorBridge(generate).advise(holdings, totals, get_wind_mood(4))
        assert text.startswith("【系統提示】：API Key 無效")

    async def test_permission_message(
        self, api_key: None, holdings: list[Holding], totals: PortfolioTotals
    ) -> None:
        generate = AsyncMock(side_effect=RuntimeError("404 Requested entity was not found."))
        text = await AdvisorBridge(generate).advise(holdings, totals, get_wind_mood(4))
        assert "權限異常" in text

    async def test_empty_output(
        self, api_key: None, holdings: list[Holding], totals: PortfolioTotals
    ) -> None:
        text = await AdvisorBridge(AsyncMock(return_value="")).advise(
            holdings, totals, get_wind_mood(4)
        )
        assert "AI 回傳內容為空" in text


# ── Gemini ──────────────────────────────────────────────────────────────────


class TestGeminiGenerator:
    """google-genai call shape."""

    async def test_calls_generate_content(self, api_key: None) -> None:
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text="建議"))
        with patch("kite_tracker.advisor.gemini.genai.Client", return_value=client) as client_cls:
            text = await GeminiGenerator()(
                "prompt", model="gemini-3-flash-preview", temperature=0.6, max_output_tokens=800
            )

        assert text == "建議"
        client_cls.assert_called_once_with(api_key="test-key")
        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-3-flash-preview"
        assert kwargs["contents"] == "prompt"
        assert kwargs["config"].temperature == 0.6
        assert kwargs["config"].max_output_tokens == 800

    async def test_missing_text_is_empty(self, api_key: None) -> None:
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text=None))
        with patch("kite_tracker.advisor.gemini.genai.Client", return_value=client):
            text = await GeminiGenerator()(
                "prompt", model="m", temperature=0.1, max_output_tokens=10
            )
        assert text == ""

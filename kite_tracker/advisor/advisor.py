"""
Bridge to an external text generator for portfolio advice.

Builds the advice prompt from holdings, totals and the current mood,
then calls an injected async generator. Generator failures never
propagate; they become a user-facing message instead.

Usage:
    bridge = AdvisorBridge(generate=my_llm_call, config=config.advisor)
    text = await bridge.advise(state.holdings, state.totals, state.wind)
"""

import os
from typing import Any, Awaitable, Callable, List

from loguru import logger

from kite_tracker.config import AdvisorConfig
from kite_tracker.portfolio.models import Holding, PortfolioTotals, WindMood

TextGenerator = Callable[..., Awaitable[str]]

PROMPT_TEMPLATE = """\
你是一位專精於台灣股市的投資戰略顧問，語氣冷靜、專業且具備批判性思維。

【當前市場環境 (風度)】：{wind}

【我的投資組合數據】：
- 總入金（總本金）：{total_budget:.0f} TWD
- 當前總市值：{market_value:.0f} TWD
- 未實現損益：{total_profit:+.0f} TWD
- 可用現金流：{available_cash:.0f} TWD

【具體持股明細】：
{holdings}

【任務要求】：
1. 分析當前市場「風度」對上述持股的潛在影響。
2. 評估現金與部位的佔比是否健康（目前現金佔比：{cash_pct:.1f}%）。
3. 給予短、中、長期的具體戰術建議（例如：減碼、續抱、或尋找新的價值窪地）。

請以繁體中文回答，條列式呈現，內容需簡練且具備高度專業質感。
"""


def format_holding_line(holding: Holding) -> str:
    return (
        f"- {holding.name}({holding.code}): 週期 {holding.period}, "
        f"成本 {holding.cost:g}, 現價 {holding.current_price:g}"
    )


def build_prompt(holdings: List[Holding], totals: PortfolioTotals, wind: WindMood) -> str:
    """Render the advice prompt for the external generator."""
    lines = "\n".join(format_holding_line(h) for h in holdings) or "- (目前無持股)"
    return PROMPT_TEMPLATE.format(
        wind=wind.name,
        total_budget=totals.total_budget,
        market_value=totals.market_value,
        total_profit=totals.total_profit,
        available_cash=totals.available_cash,
        holdings=lines,
        cash_pct=totals.cash_ratio * 100,
    )


class AdvisorBridge:
    """Calls the injected generator with the rendered prompt."""

    def __init__(
        self,
        generate: TextGenerator,
        config: AdvisorConfig | None = None,
        api_key_env: str = "API_KEY",
    ) -> None:
        self._generate = generate
        self._config = config or AdvisorConfig()
        self._api_key_env = api_key_env

    async def advise(
        self, holdings: List[Holding], totals: PortfolioTotals, wind: WindMood
    ) -> str:
        """Return advice text, or a user-facing explanation when generation fails."""
        try:
            if not os.getenv(self._api_key_env):
                raise AdvisorError("系統環境未偵測到有效的 API Key")

            prompt = build_prompt(holdings, totals, wind)
            text = await self._generate(
                prompt,
                model=self._config.model,
                temperature=self._config.temperature,
                max_output_tokens=self._config.max_output_tokens,
            )
            if not text:
                raise AdvisorError("AI 回傳內容為空")
            return text

        except Exception as e:
            logger.error("Advisor: generation failed: {}", e)
            return self._describe_failure(e)

    @staticmethod
    def _describe_failure(error: Any) -> str:
        message = str(error)
        if "Requested entity was not found" in message:
            return "【系統提示】：API 金鑰權限異常或專案未設定，請確認您的 API Key 是否具備模型使用權限。"
        if "API key not valid" in message:
            return "【系統提示】：API Key 無效或已過期，請重新檢查環境變數設定。"
        return f"AI 顧問目前無法提供即時分析（錯誤原因：{message or '未知網路異常'}）。"


class AdvisorError(Exception):
    """Advice generation produced no usable text."""

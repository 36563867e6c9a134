"""
Portfolio domain models — holdings, cash transactions, snapshots,
market moods, and the derived totals shown on the dashboard.

Usage:
    holding = Holding(name="台積電", code="2330", shares=1000, cost=900, current_price=1105)
    totals = compute_totals([holding], transactions)
    totals.available_cash
"""

import time
from typing import Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

Period = Literal["短線", "中期", "長期"]
TransactionType = Literal["deposit", "withdraw"]


def _new_id() -> int:
    return int(time.time() * 1000)


# ── Market Mood ─────────────────────────────────────────────────────────────


class WindMood(BaseModel):
    """User-selected market mood, carried into snapshots and advice prompts."""

    id: int
    name: str
    icon: str
    color: str


WIND_MOODS: List[WindMood] = [
    WindMood(id=1, name="強風 (風箏飛高高)", icon="Tornado", color="text-red-400"),
    WindMood(id=2, name="亂流 (注意風箏高度)", icon="Wind", color="text-yellow-400"),
    WindMood(id=3, name="陣風 (注意風險機會)", icon="CloudLightning", color="text-blue-400"),
    WindMood(id=4, name="無風 (找價值好股)", icon="Snowflake", color="text-emerald-400"),
]
DEFAULT_WIND_ID = 4


def get_wind_mood(wind_id: int) -> WindMood:
    """Look up a mood by id, falling back to the default mood."""
    for mood in WIND_MOODS:
        if mood.id == wind_id:
            return mood
    return next(m for m in WIND_MOODS if m.id == DEFAULT_WIND_ID)


# ── Holdings & Cash ─────────────────────────────────────────────────────────


class Holding(BaseModel):
    """One equity position, identified by its exchange code."""

    id: int = Field(default_factory=_new_id)
    name: str = ""
    code: str
    shares: float = 0.0
    cost: float = 0.0
    current_price: float = 0.0
    period: Period = "中期"
    take_profit: float | None = None
    stop_loss: float | None = None

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        return value.strip()

    @property
    def invested(self) -> float:
        return self.shares * self.cost

    @property
    def market_value(self) -> float:
        return self.shares * self.current_price

    @property
    def profit(self) -> float:
        return (self.current_price - self.cost) * self.shares

    @property
    def profit_pct(self) -> float:
        if not self.cost:
            return 0.0
        return (self.current_price - self.cost) / self.cost * 100

    @property
    def hit_take_profit(self) -> bool:
        if not self.take_profit:
            return False
        return self.current_price >= self.take_profit

    @property
    def hit_stop_loss(self) -> bool:
        if not self.stop_loss:
            return False
        return self.current_price <= self.stop_loss


class Transaction(BaseModel):
    """Cash deposit or withdrawal."""

    id: int = Field(default_factory=_new_id)
    amount: float = Field(gt=0)
    type: TransactionType = "deposit"
    date: str = ""

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == "deposit" else -self.amount


class Snapshot(BaseModel):
    """Point-in-time record of portfolio value, saved on demand."""

    id: int = Field(default_factory=_new_id)
    date: str
    market_value: float
    total_profit: float
    wind: WindMood
    stock_count: int


# ── Totals ──────────────────────────────────────────────────────────────────


class PortfolioTotals(BaseModel):
    """Derived portfolio metrics."""

    total_budget: float = 0.0
    invested_capital: float = 0.0
    market_value: float = 0.0
    available_cash: float = 0.0
    total_profit: float = 0.0

    @property
    def cash_ratio(self) -> float:
        """Available cash as a fraction of total budget (0 when nothing deposited)."""
        if not self.total_budget:
            return 0.0
        return self.available_cash / self.total_budget


def compute_totals(holdings: List[Holding], transactions: List[Transaction]) -> PortfolioTotals:
    total_budget = sum(t.signed_amount for t in transactions)
    invested_capital = sum(h.invested for h in holdings)
    market_value = sum(h.market_value for h in holdings)
    return PortfolioTotals(
        total_budget=total_budget,
        invested_capital=invested_capital,
        market_value=market_value,
        available_cash=total_budget - invested_capital,
        total_profit=market_value - invested_capital,
    )


def take_snapshot(
    holdings: List[Holding], totals: PortfolioTotals, wind: WindMood, date: str
) -> Snapshot:
    return Snapshot(
        date=date,
        market_value=totals.market_value,
        total_profit=totals.total_profit,
        wind=wind,
        stock_count=len(holdings),
    )


# ── Aggregate State ─────────────────────────────────────────────────────────


class PortfolioState(BaseModel):
    """Everything the tracker persists between runs."""

    holdings: List[Holding] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    history: List[Snapshot] = Field(default_factory=list)
    wind_id: int = DEFAULT_WIND_ID
    stock_names: Dict[str, str] = Field(default_factory=dict)

    @property
    def wind(self) -> WindMood:
        return get_wind_mood(self.wind_id)

    @property
    def totals(self) -> PortfolioTotals:
        return compute_totals(self.holdings, self.transactions)

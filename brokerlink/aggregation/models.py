"""Data models for the unified portfolio view."""

from dataclasses import dataclass, field
from typing import List, Optional

from ..persistence.models import HistoricalDataPoint


@dataclass
class ProviderContribution:
    """One provider's share of an aggregated position."""

    provider: str
    quantity: float
    market_value: float
    cost: float
    price: float

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "quantity": self.quantity,
            "marketValue": self.market_value,
            "cost": self.cost,
            "price": self.price,
        }


@dataclass
class AggregatedPosition:
    """A symbol's holdings summed across providers."""

    symbol: str
    total_quantity: float = 0.0
    total_cost: float = 0.0
    total_market_value: float = 0.0
    average_price: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    providers: List[ProviderContribution] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "totalQuantity": self.total_quantity,
            "totalCost": self.total_cost,
            "totalMarketValue": self.total_market_value,
            "averagePrice": self.average_price,
            "unrealizedPnL": self.unrealized_pnl,
            "unrealizedPnLPercent": self.unrealized_pnl_percent,
            "providers": [p.to_dict() for p in self.providers],
        }


@dataclass
class PortfolioSummary:
    """Portfolio totals across every connected provider.

    ``day_change`` is the summed unrealized P&L, not a true day-over-day delta.
    """

    total_value: float
    total_cost: float
    total_gain_loss: float
    total_gain_loss_percent: float
    day_change: float
    day_change_percent: float
    top_gainer: Optional[AggregatedPosition]
    top_loser: Optional[AggregatedPosition]
    positions_count: int
    providers_connected: List[str]
    computed_at: float

    @classmethod
    def empty(cls, computed_at: float) -> "PortfolioSummary":
        """Summary used when no provider is connected."""
        return cls(
            total_value=0.0,
            total_cost=0.0,
            total_gain_loss=0.0,
            total_gain_loss_percent=0.0,
            day_change=0.0,
            day_change_percent=0.0,
            top_gainer=None,
            top_loser=None,
            positions_count=0,
            providers_connected=[],
            computed_at=computed_at,
        )

    def to_dict(self) -> dict:
        return {
            "totalValue": self.total_value,
            "totalCost": self.total_cost,
            "totalGainLoss": self.total_gain_loss,
            "totalGainLossPercent": self.total_gain_loss_percent,
            "dayChange": self.day_change,
            "dayChangePercent": self.day_change_percent,
            "topGainer": self.top_gainer.to_dict() if self.top_gainer else None,
            "topLoser": self.top_loser.to_dict() if self.top_loser else None,
            "positionsCount": self.positions_count,
            "providersConnected": list(self.providers_connected),
            "computedAt": self.computed_at,
        }


@dataclass
class PortfolioHistory:
    """Stored daily points for a period plus the return over it."""

    data: List[HistoricalDataPoint]
    period: str
    start_value: float = 0.0
    end_value: float = 0.0
    total_return: float = 0.0
    total_return_percent: float = 0.0

    def to_dict(self) -> dict:
        return {
            "data": [p.to_dict() for p in self.data],
            "period": self.period,
            "startValue": self.start_value,
            "endValue": self.end_value,
            "totalReturn": self.total_return,
            "totalReturnPercent": self.total_return_percent,
        }


@dataclass
class DayPerformance:
    """Best or worst day in a history."""

    date: str
    change: float
    change_percent: float


@dataclass
class PerformanceMetrics:
    """Statistics over day-over-day returns (percent)."""

    best_day: Optional[DayPerformance] = None
    worst_day: Optional[DayPerformance] = None
    avg_daily_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0

from .aggregation_engine import AggregationEngine, calculate_summary, merge_positions
from .models import (
    AggregatedPosition,
    DayPerformance,
    PerformanceMetrics,
    PortfolioHistory,
    PortfolioSummary,
    ProviderContribution,
)

__all__ = [
    "AggregatedPosition",
    "AggregationEngine",
    "DayPerformance",
    "PerformanceMetrics",
    "PortfolioHistory",
    "PortfolioSummary",
    "ProviderContribution",
    "calculate_summary",
    "merge_positions",
]

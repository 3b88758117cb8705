"""Merges positions and watchlists across providers into one portfolio view."""

import asyncio
import calendar
import logging
import math
import time
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pytz

from ..broker.models import Operation, Position, Provider, WatchlistItem
from ..client.request_client import AuthenticatedRequestClient
from ..errors import NetworkFailure, ParseError
from ..persistence.history_store import HistoryStore
from ..persistence.models import HistoricalDataPoint
from ..session.session_store import SessionStore
from ..utils.logging_utils import mask_amount
from .models import (
    AggregatedPosition,
    DayPerformance,
    PerformanceMetrics,
    PortfolioHistory,
    PortfolioSummary,
    ProviderContribution,
)

logger = logging.getLogger(__name__)

PERIODS = ("1D", "1W", "1M", "3M", "1Y", "ALL")

# Failures that only drop the affected provider from an aggregation pass
PROVIDER_ERRORS = (NetworkFailure, ParseError)


def _finite(value: Any) -> float:
    """Coerce to float, mapping missing or non-finite values to 0."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def merge_positions(batches: Iterable[Tuple[str, Iterable[Position]]]) -> List[AggregatedPosition]:
    """
    Merge per-provider positions by symbol.

    Symbols keep the order in which they are first seen. Totals are sums of
    the contributions; average price, P&L and P&L percent are derived from
    those sums, so merging the same input twice yields the same result.

    Args:
        batches: ``(provider, positions)`` pairs

    Returns:
        One AggregatedPosition per symbol
    """
    merged: Dict[str, AggregatedPosition] = {}
    for provider, positions in batches:
        for position in positions:
            symbol = position.symbol.upper()
            quantity = _finite(position.quantity)
            market_value = _finite(position.market_value)
            cost = quantity * _finite(position.average_cost)

            aggregated = merged.get(symbol)
            if aggregated is None:
                aggregated = AggregatedPosition(symbol=symbol)
                merged[symbol] = aggregated

            aggregated.providers.append(ProviderContribution(
                provider=str(provider),
                quantity=quantity,
                market_value=market_value,
                cost=cost,
                price=_finite(position.current_price),
            ))
            aggregated.total_quantity += quantity
            aggregated.total_cost += cost
            aggregated.total_market_value += market_value
            aggregated.average_price = (
                aggregated.total_cost / aggregated.total_quantity if aggregated.total_quantity > 0 else 0.0
            )
            aggregated.unrealized_pnl = aggregated.total_market_value - aggregated.total_cost
            aggregated.unrealized_pnl_percent = (
                aggregated.unrealized_pnl / aggregated.total_cost * 100 if aggregated.total_cost > 0 else 0.0
            )
    return list(merged.values())


def calculate_summary(
    positions: Sequence[AggregatedPosition],
    providers: Sequence[str],
    computed_at: float,
) -> PortfolioSummary:
    """
    Compute portfolio totals from aggregated positions.

    Args:
        positions: Merged positions
        providers: Providers that contributed data
        computed_at: Timestamp stored on the summary

    Returns:
        PortfolioSummary
    """
    total_value = sum(_finite(p.total_market_value) for p in positions)
    total_cost = sum(_finite(p.total_cost) for p in positions)
    total_gain_loss = total_value - total_cost
    total_gain_loss_percent = total_gain_loss / total_cost * 100 if total_cost > 0 else 0.0

    # Approximation: no intraday reference price is available
    day_change = sum(_finite(p.unrealized_pnl) for p in positions)
    base = total_value - day_change
    day_change_percent = day_change / base * 100 if total_value > 0 and base != 0 else 0.0

    top_gainer = max(positions, key=lambda p: p.unrealized_pnl_percent, default=None)
    top_loser = min(positions, key=lambda p: p.unrealized_pnl_percent, default=None)

    return PortfolioSummary(
        total_value=total_value,
        total_cost=total_cost,
        total_gain_loss=total_gain_loss,
        total_gain_loss_percent=total_gain_loss_percent,
        day_change=day_change,
        day_change_percent=day_change_percent,
        top_gainer=top_gainer if top_gainer and top_gainer.unrealized_pnl_percent > 0 else None,
        top_loser=top_loser if top_loser and top_loser.unrealized_pnl_percent < 0 else None,
        positions_count=len(positions),
        providers_connected=list(providers),
        computed_at=computed_at,
    )


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))


class AggregationEngine:
    """Produces the cross-provider portfolio view with short-lived caches.

    Session errors from any provider propagate so the caller can ask the user
    to reconnect. Network and parse failures drop only the affected provider;
    they are logged with structured fields and counted in ``failure_counts``.
    """

    def __init__(
        self,
        client: AuthenticatedRequestClient,
        session_store: SessionStore,
        history_store: HistoryStore,
        summary_ttl_seconds: float = 300.0,
        watchlist_ttl_seconds: float = 120.0,
        timezone: str = "America/New_York",
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the engine.

        Args:
            client: Client used to fetch provider data
            session_store: Source of the active provider list
            history_store: Persistence for daily portfolio values
            summary_ttl_seconds: Summary cache lifetime
            watchlist_ttl_seconds: Consolidated watchlist cache lifetime
            timezone: Timezone that defines the calendar day of a history point
            clock: Returns the current time in epoch seconds
        """
        self.client = client
        self.session_store = session_store
        self.history_store = history_store
        self.summary_ttl_seconds = summary_ttl_seconds
        self.watchlist_ttl_seconds = watchlist_ttl_seconds
        self.timezone = pytz.timezone(timezone)
        self.clock = clock
        self.failure_counts: Dict[str, int] = defaultdict(int)
        self._summary_cache: Optional[Tuple[float, PortfolioSummary]] = None
        self._watchlist_cache: Optional[Tuple[float, List[WatchlistItem]]] = None

    def _today(self) -> date:
        """Get today's date in the configured timezone."""
        return datetime.fromtimestamp(self.clock(), tz=self.timezone).date()

    def _record_failure(self, provider: Provider, operation: Operation, error: Exception) -> None:
        self.failure_counts[provider.value] += 1
        logger.warning(
            f"Skipping {provider} in aggregation, {operation} failed: {error}",
            extra={
                "provider": provider.value,
                "operation": operation.value,
                "error_type": type(error).__name__,
            },
        )

    async def _fetch_positions(self) -> Tuple[List[Tuple[str, List[Position]]], List[str]]:
        providers = self.session_store.active_providers()

        async def fetch(provider: Provider) -> Optional[List[Position]]:
            try:
                return await self.client.get_positions(provider)
            except PROVIDER_ERRORS as e:
                self._record_failure(provider, Operation.POSITIONS, e)
                return None

        results = await asyncio.gather(*(fetch(p) for p in providers))
        batches = [(p.value, positions) for p, positions in zip(providers, results) if positions is not None]
        return batches, [provider for provider, _ in batches]

    async def get_summary(self) -> PortfolioSummary:
        """
        Get the portfolio summary, served from cache while it is fresh.

        A freshly computed summary is cached and recorded as today's history
        point. With no active provider an empty summary is returned and
        nothing is cached or recorded.

        Raises:
            SessionMissing, SessionInvalid: If a provider's session is unusable
        """
        now = self.clock()
        if self._summary_cache is not None:
            cached_at, summary = self._summary_cache
            if now - cached_at < self.summary_ttl_seconds:
                return summary

        if not self.session_store.active_providers():
            logger.info("No connected providers, returning empty portfolio")
            return PortfolioSummary.empty(now)

        batches, connected = await self._fetch_positions()
        if not connected:
            logger.warning("Every provider failed, returning empty portfolio")
            return PortfolioSummary.empty(now)

        summary = calculate_summary(merge_positions(batches), connected, now)
        self._summary_cache = (now, summary)
        self._store_history_point(summary)
        logger.info(
            f"Portfolio summary: {mask_amount(summary.total_value)} in "
            f"{summary.positions_count} positions across {', '.join(connected)}"
        )
        return summary

    async def get_detailed_positions(self) -> List[AggregatedPosition]:
        """Merge positions from every active provider, bypassing the cache."""
        batches, _ = await self._fetch_positions()
        return merge_positions(batches)

    def _store_history_point(self, summary: PortfolioSummary) -> None:
        point = HistoricalDataPoint(
            date=self._today().isoformat(),
            total_value=summary.total_value,
            day_change=summary.day_change,
            day_change_percent=summary.day_change_percent,
        )
        self.history_store.upsert(point)

    async def get_consolidated_watchlist(self) -> List[WatchlistItem]:
        """
        Get every provider's watchlist merged by symbol, first seen wins.

        Raises:
            SessionMissing, SessionInvalid: If a provider's session is unusable
        """
        now = self.clock()
        if self._watchlist_cache is not None:
            cached_at, items = self._watchlist_cache
            if now - cached_at < self.watchlist_ttl_seconds:
                return list(items)

        providers = self.session_store.active_providers()
        if not providers:
            return []

        seen: Dict[str, WatchlistItem] = {}
        for provider in providers:
            try:
                items = await self.client.get_watchlist(provider)
            except PROVIDER_ERRORS as e:
                self._record_failure(provider, Operation.WATCHLIST, e)
                continue
            for item in items:
                seen.setdefault(item.symbol.upper(), item)

        consolidated = list(seen.values())
        self._watchlist_cache = (now, consolidated)
        return list(consolidated)

    async def add_to_all_watchlists(self, symbol: str) -> Dict[str, Any]:
        """
        Add a symbol to every connected provider's watchlist.

        Returns:
            ``{"success": bool, "results": {provider: bool}}``; success if any provider succeeded
        """
        return await self._mutate_all(symbol, add=True)

    async def remove_from_all_watchlists(self, symbol: str) -> Dict[str, Any]:
        """Remove a symbol from every connected provider's watchlist."""
        return await self._mutate_all(symbol, add=False)

    async def _mutate_all(self, symbol: str, add: bool) -> Dict[str, Any]:
        results: Dict[str, bool] = {}
        for provider in self.session_store.active_providers():
            if add:
                results[provider.value] = await self.client.add_to_watchlist(provider, symbol)
            else:
                results[provider.value] = await self.client.remove_from_watchlist(provider, symbol)
        self.invalidate_cache()
        return {"success": any(results.values()), "results": results}

    def invalidate_cache(self) -> None:
        """Drop the cached summary and watchlist."""
        self._summary_cache = None
        self._watchlist_cache = None

    def get_history(self, period: str = "1M") -> PortfolioHistory:
        """
        Get stored daily values for a period.

        Args:
            period: One of 1D, 1W, 1M, 3M, 1Y, ALL

        Returns:
            PortfolioHistory; empty when there are no points in range

        Raises:
            ValueError: If the period is unknown
        """
        period = period.upper()
        if period not in PERIODS:
            raise ValueError(f"Invalid period: {period}. Must be one of: {', '.join(PERIODS)}")

        points = self.history_store.load()
        if not points:
            return PortfolioHistory(data=[], period=period)

        today = self._today()
        if period == "1D":
            start = (today - timedelta(days=1)).isoformat()
        elif period == "1W":
            start = (today - timedelta(days=7)).isoformat()
        elif period == "1M":
            start = _shift_months(today, -1).isoformat()
        elif period == "3M":
            start = _shift_months(today, -3).isoformat()
        elif period == "1Y":
            start = _shift_months(today, -12).isoformat()
        else:
            start = points[0].date

        data = [p for p in points if p.date >= start]
        if not data:
            return PortfolioHistory(data=[], period=period)

        start_value = data[0].total_value
        end_value = data[-1].total_value
        total_return = end_value - start_value
        return PortfolioHistory(
            data=data,
            period=period,
            start_value=start_value,
            end_value=end_value,
            total_return=total_return,
            total_return_percent=total_return / start_value * 100 if start_value > 0 else 0.0,
        )

    def get_performance_metrics(self) -> PerformanceMetrics:
        """
        Compute statistics over the last year of day-over-day returns.

        Volatility is the population standard deviation of the daily percent
        returns; the Sharpe ratio is their mean over that volatility.
        """
        data = self.get_history("1Y").data
        if len(data) < 2:
            return PerformanceMetrics()

        returns = []
        for previous, current in zip(data, data[1:]):
            prev_value = previous.total_value
            returns.append((current.total_value - prev_value) / prev_value * 100 if prev_value > 0 else 0.0)

        best_index = max(range(len(returns)), key=lambda i: returns[i])
        worst_index = min(range(len(returns)), key=lambda i: returns[i])

        avg = sum(returns) / len(returns)
        variance = sum((r - avg) ** 2 for r in returns) / len(returns)
        volatility = math.sqrt(variance)

        def day(index: int) -> DayPerformance:
            point = data[index + 1]
            return DayPerformance(date=point.date, change=point.day_change, change_percent=returns[index])

        return PerformanceMetrics(
            best_day=day(best_index),
            worst_day=day(worst_index),
            avg_daily_return=avg,
            volatility=volatility,
            sharpe_ratio=avg / volatility if volatility > 0 else 0.0,
        )

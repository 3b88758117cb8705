"""Robinhood adapter for the web app's private JSON API."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping
from urllib.parse import quote as urlquote

from ..broker import BrokerAdapter
from ..models import (
    Candle,
    NewsItem,
    Operation,
    Position,
    Provider,
    Quote,
    RequestSpec,
    WatchlistItem,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.robinhood.com"

# timeframe -> (interval, span) accepted by the historicals endpoint
TIMEFRAMES = {
    "1D": ("5minute", "day"),
    "1W": ("10minute", "week"),
    "1M": ("hour", "month"),
    "3M": ("day", "3month"),
    "1Y": ("day", "year"),
    "5Y": ("week", "5year"),
}

ACCESS_TOKEN_COOKIE = "__Host-Web-App-Secondary-Access-Token"


class RobinhoodAdapter(BrokerAdapter):
    """Robinhood adapter."""

    provider = Provider.ROBINHOOD
    login_url = "https://robinhood.com/login"
    refresh_url = "https://robinhood.com/api-token-auth/"
    login_success_host = "robinhood.com"
    login_success_paths = ("/dashboard", "/account", "/positions")
    connection_check_fallbacks = (f"{API_BASE}/accounts/",)

    def base_headers(self) -> Dict[str, str]:
        return {
            "Origin": "https://robinhood.com",
            "Referer": "https://robinhood.com/",
            "X-Robinhood-API-Version": "1.431.4",
            "X-Hyper-Ex": "enabled",
            "X-Timezone-Id": "America/Los_Angeles",
        }

    def auth_headers(self, tokens: Mapping[str, str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if tokens.get(ACCESS_TOKEN_COOKIE):
            headers["Authorization"] = f"Bearer {tokens[ACCESS_TOKEN_COOKIE]}"
        elif tokens.get("access_token"):
            headers["Authorization"] = f"Bearer {tokens['access_token']}"
        elif tokens.get("accessToken"):
            headers["Authorization"] = f"Bearer {tokens['accessToken']}"
        elif tokens.get("authToken"):
            headers["Authorization"] = f"Token {tokens['authToken']}"
        if tokens.get("device_id"):
            headers["X-Device-ID"] = tokens["device_id"]
        return headers

    def extraction_script(self) -> str:
        return """
          if (window.RH && window.RH.auth) {
            tokens.rhAuth = JSON.stringify(window.RH.auth);
          }
          document.cookie.split(';').forEach(function(pair) {
            var idx = pair.indexOf('=');
            var name = pair.slice(0, idx).trim();
            if (name === '__Host-Web-App-Secondary-Access-Token' || name === 'device_id') {
              tokens[name] = decodeURIComponent(pair.slice(idx + 1));
            }
          });
        """

    def build_request(self, operation: Operation, params: Mapping[str, Any]) -> RequestSpec:
        if operation == Operation.QUOTE:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("GET", f"{API_BASE}/quotes/?symbols={urlquote(symbol)}")
        if operation == Operation.CANDLES:
            symbol = self._require_symbol(operation, params)
            timeframe = params.get("timeframe", "1D")
            interval, span = TIMEFRAMES.get(timeframe, (timeframe, "week"))
            return RequestSpec(
                "GET",
                f"{API_BASE}/marketdata/historicals/{urlquote(symbol)}/"
                f"?interval={interval}&bounds=regular&span={span}",
            )
        if operation == Operation.NEWS:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("GET", f"{API_BASE}/midlands/news/{urlquote(symbol)}/")
        if operation == Operation.POSITIONS:
            return RequestSpec("GET", f"{API_BASE}/positions/?nonzero=true")
        if operation == Operation.WATCHLIST:
            return RequestSpec("GET", f"{API_BASE}/watchlists/Default/")
        if operation == Operation.ADD_TO_WATCHLIST:
            symbol = self._require_symbol(operation, params)
            return RequestSpec(
                "POST",
                f"{API_BASE}/watchlists/Default/",
                json={"instrument": f"{API_BASE}/instruments/?symbol={symbol}"},
            )
        if operation == Operation.REMOVE_FROM_WATCHLIST:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("DELETE", f"{API_BASE}/watchlists/Default/{urlquote(symbol)}/")
        if operation == Operation.CONNECTION_CHECK:
            return RequestSpec("GET", f"{API_BASE}/user/")
        raise ValueError(f"Unsupported operation for Robinhood: {operation}")

    def parse_response(self, operation: Operation, raw: Any, params: Mapping[str, Any]) -> Any:
        if operation == Operation.QUOTE:
            return self._parse_quote(raw, self._require_symbol(operation, params))
        if operation == Operation.CANDLES:
            return self._parse_candles(raw, int(params.get("limit", 100)))
        if operation == Operation.NEWS:
            return self._parse_news(raw)
        if operation == Operation.POSITIONS:
            return self._parse_positions(raw)
        if operation == Operation.WATCHLIST:
            return self._parse_watchlist(raw)
        # Any 2xx answer, including an empty body, counts as success
        if operation in (
            Operation.ADD_TO_WATCHLIST,
            Operation.REMOVE_FROM_WATCHLIST,
            Operation.CONNECTION_CHECK,
        ):
            return True
        raise ValueError(f"Unsupported operation for Robinhood: {operation}")

    def _results(self, operation: Operation, raw: Any) -> List[Any]:
        if isinstance(raw, list):
            return raw
        payload = self._dict(operation, raw, "response")
        return self._list(operation, payload.get("results"), "results")

    def _parse_quote(self, raw: Any, symbol: str) -> Quote:
        op = Operation.QUOTE
        results = raw.get("results") if isinstance(raw, dict) else None
        if isinstance(results, list) and results:
            data = self._dict(op, results[0], "results[0]")
        else:
            data = self._dict(op, raw, "response")

        price = self._float(op, data.get("last_trade_price"), "last_trade_price")
        previous_close = self._float(op, data.get("previous_close"), "previous_close")
        change = price - previous_close
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=(change / previous_close * 100) if previous_close else 0.0,
            timestamp=time.time(),
            volume=self._optional_float(data.get("volume")),
            high=self._optional_float(data.get("high")),
            low=self._optional_float(data.get("low")),
            open=self._optional_float(data.get("open")),
            previous_close=previous_close,
        )

    def _parse_candles(self, raw: Any, limit: int) -> List[Candle]:
        op = Operation.CANDLES
        payload = self._dict(op, raw, "response")
        rows = payload.get("historicals")
        if rows is None:
            rows = payload.get("results")
        candles = []
        for item in self._list(op, rows, "historicals"):
            item = self._dict(op, item, "candle")
            begins_at = item.get("begins_at")
            if not begins_at:
                raise self._fail(op, "missing field 'begins_at'")
            try:
                moment = datetime.fromisoformat(str(begins_at).replace("Z", "+00:00"))
            except ValueError:
                raise self._fail(op, f"invalid timestamp {begins_at!r}") from None
            candles.append(Candle(
                time=int(moment.timestamp() * 1000),
                open=self._float(op, item.get("open_price"), "open_price"),
                high=self._float(op, item.get("high_price"), "high_price"),
                low=self._float(op, item.get("low_price"), "low_price"),
                close=self._float(op, item.get("close_price"), "close_price"),
                volume=self._optional_float(item.get("volume")) or 0.0,
            ))
        return candles[-limit:] if limit > 0 else candles

    def _parse_news(self, raw: Any) -> List[NewsItem]:
        items = []
        for index, item in enumerate(self._results(Operation.NEWS, raw)):
            item = self._dict(Operation.NEWS, item, "news item")
            items.append(NewsItem(
                id=str(item.get("uuid") or f"rh-{index}"),
                title=item.get("title", ""),
                url=item.get("url"),
                source=item.get("source"),
                published_at=item.get("published_at"),
                summary=item.get("summary"),
            ))
        return items

    def _parse_positions(self, raw: Any) -> List[Position]:
        op = Operation.POSITIONS
        positions = []
        for pos in self._results(op, raw):
            pos = self._dict(op, pos, "position")
            quantity = self._float(op, pos.get("quantity"), "quantity")
            if quantity <= 0:
                continue

            instrument = pos.get("instrument")
            symbol = pos.get("symbol") or (instrument.get("symbol") if isinstance(instrument, dict) else None)
            if not symbol:
                logger.debug(f"Skipping Robinhood position without symbol: {pos.get('instrument')}")
                continue

            average_cost = self._optional_float(
                pos.get("average_buy_price") or pos.get("average_price") or pos.get("cost_basis")
            ) or 0.0
            current_price = self._optional_float(
                pos.get("last_trade_price") or pos.get("mark_price") or pos.get("price")
            ) or 0.0
            market_value = quantity * current_price
            cost = quantity * average_cost
            unrealized = market_value - cost
            positions.append(Position(
                symbol=str(symbol).upper(),
                quantity=quantity,
                average_cost=average_cost,
                current_price=current_price,
                market_value=market_value,
                unrealized_pnl=unrealized,
                unrealized_pnl_percent=(unrealized / cost * 100) if cost > 0 else 0.0,
            ))
        return positions

    def _parse_watchlist(self, raw: Any) -> List[WatchlistItem]:
        op = Operation.WATCHLIST
        items = []
        for entry in self._results(op, raw):
            # The list endpoint nests items per watchlist; the detail endpoint does not
            nested = entry.get("results") if isinstance(entry, dict) else None
            for item in (nested if isinstance(nested, list) else [entry]):
                item = self._dict(op, item, "watchlist item")
                symbol = item.get("symbol")
                if not symbol:
                    raise self._fail(op, "missing field 'symbol'")
                price = self._float(op, item.get("last_trade_price"), "last_trade_price")
                previous_close = self._optional_float(item.get("previous_close")) or 0.0
                change = price - previous_close if previous_close else 0.0
                items.append(WatchlistItem(
                    symbol=str(symbol).upper(),
                    name=item.get("simple_name") or item.get("name") or str(symbol).upper(),
                    price=price,
                    change=change,
                    change_percent=(change / previous_close * 100) if previous_close else 0.0,
                ))
        return items

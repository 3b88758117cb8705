"""Webull adapter for the web client's private gateway endpoints."""

import logging
import time
from datetime import datetime, timezone
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

QUOTES_BASE = "https://quotes-gw.webullfintech.com/api"
INFO_BASE = "https://infoapi.webullfintech.com/api"
TRADE_BASE = "https://trade-gw.webullfintech.com/api"
USER_BASE = "https://userapi.webullfintech.com/api"


class WebullAdapter(BrokerAdapter):
    """Webull adapter.

    Webull wraps nearly every payload in a ``{"data": ...}`` envelope and
    reports percentages as ratios (0.0123 == 1.23%).
    """

    provider = Provider.WEBULL
    login_url = "https://www.webull.com/login"
    refresh_url = "https://act.webull.com/webull-login-inquiry/api/passport/refreshToken"
    login_success_host = "webull.com"
    login_success_paths = ("/trading", "/account", "/portfolio")
    storage_token_keys = ("wbAccessToken", "deviceId")

    def auth_headers(self, tokens: Mapping[str, str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if tokens.get("accessToken"):
            headers["Authorization"] = f"Bearer {tokens['accessToken']}"
        elif tokens.get("wbAccessToken"):
            # Webull's own web client sends the raw token in a custom header
            headers["access_token"] = tokens["wbAccessToken"]
        if tokens.get("deviceId"):
            headers["deviceid"] = tokens["deviceId"]
        return headers

    def extraction_script(self) -> str:
        return """
          if (window.webull && window.webull.user) {
            tokens.webullUser = JSON.stringify(window.webull.user);
          }
          ['wbAccessToken', 'refreshToken', 'deviceId'].forEach(function(key) {
            var value = localStorage.getItem(key);
            if (value) tokens[key] = value;
          });
        """

    def build_request(self, operation: Operation, params: Mapping[str, Any]) -> RequestSpec:
        if operation == Operation.QUOTE:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("GET", f"{QUOTES_BASE}/stock/tickerRealTime/getQuote?tickerId={urlquote(symbol)}")
        if operation == Operation.CANDLES:
            symbol = self._require_symbol(operation, params)
            limit = int(params.get("limit", 100))
            return RequestSpec(
                "GET",
                f"{QUOTES_BASE}/stock/capitalflow/ticker?tickerId={urlquote(symbol)}&type=1&count={limit}",
            )
        if operation == Operation.NEWS:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("GET", f"{INFO_BASE}/information/news/query?tickerId={urlquote(symbol)}&pageSize=20")
        if operation == Operation.POSITIONS:
            return RequestSpec("GET", f"{TRADE_BASE}/trade/account/getPositions")
        if operation == Operation.WATCHLIST:
            return RequestSpec("GET", f"{USER_BASE}/user/watchlist/query")
        if operation == Operation.ADD_TO_WATCHLIST:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("POST", f"{USER_BASE}/user/watchlist/add", json={"symbol": symbol})
        if operation == Operation.REMOVE_FROM_WATCHLIST:
            symbol = self._require_symbol(operation, params)
            return RequestSpec("DELETE", f"{USER_BASE}/user/watchlist/remove/{urlquote(symbol)}")
        if operation == Operation.CONNECTION_CHECK:
            return RequestSpec("GET", f"{USER_BASE}/user")
        raise ValueError(f"Unsupported operation for Webull: {operation}")

    def parse_response(self, operation: Operation, raw: Any, params: Mapping[str, Any]) -> Any:
        if operation == Operation.QUOTE:
            return self._parse_quote(raw, self._require_symbol(operation, params))
        if operation == Operation.CANDLES:
            return self._parse_candles(raw)
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
        raise ValueError(f"Unsupported operation for Webull: {operation}")

    def _data_list(self, operation: Operation, raw: Any) -> List[Any]:
        if isinstance(raw, list):
            return raw
        payload = self._dict(operation, raw, "response")
        return self._list(operation, payload.get("data"), "data")

    def _parse_quote(self, raw: Any, symbol: str) -> Quote:
        op = Operation.QUOTE
        payload = self._dict(op, raw, "response")
        data = self._dict(op, payload.get("data", payload), "data")
        ratio = self._optional_float(data.get("changeRatio")) or 0.0
        return Quote(
            symbol=symbol,
            price=self._float(op, data.get("close"), "close"),
            change=self._optional_float(data.get("change")) or 0.0,
            change_percent=ratio * 100,
            timestamp=time.time(),
            volume=self._optional_float(data.get("volume")),
            high=self._optional_float(data.get("high")),
            low=self._optional_float(data.get("low")),
            open=self._optional_float(data.get("open")),
            previous_close=self._optional_float(data.get("pClose")),
        )

    def _parse_candles(self, raw: Any) -> List[Candle]:
        op = Operation.CANDLES
        candles = []
        for item in self._data_list(op, raw):
            item = self._dict(op, item, "candle")
            candles.append(Candle(
                time=int(self._float(op, item.get("timestamp"), "timestamp") * 1000),
                open=self._float(op, item.get("open"), "open"),
                high=self._float(op, item.get("high"), "high"),
                low=self._float(op, item.get("low"), "low"),
                close=self._float(op, item.get("close"), "close"),
                volume=self._optional_float(item.get("volume")) or 0.0,
            ))
        return candles

    def _parse_news(self, raw: Any) -> List[NewsItem]:
        op = Operation.NEWS
        items = []
        for index, item in enumerate(self._data_list(op, raw)):
            item = self._dict(op, item, "news item")
            published = self._optional_float(item.get("publishTime"))
            published_at = (
                datetime.fromtimestamp(published / 1000, tz=timezone.utc).isoformat()
                if published is not None else None
            )
            items.append(NewsItem(
                id=str(item.get("newsId") or f"wb-{index}"),
                title=item.get("title", ""),
                url=item.get("sourceUrl"),
                source=item.get("sourceName"),
                published_at=published_at,
                summary=item.get("summary"),
            ))
        return items

    def _parse_positions(self, raw: Any) -> List[Position]:
        op = Operation.POSITIONS
        positions = []
        for pos in self._data_list(op, raw):
            pos = self._dict(op, pos, "position")
            ticker = pos.get("ticker")
            symbol = ticker.get("symbol") if isinstance(ticker, dict) else pos.get("symbol")
            if not symbol:
                raise self._fail(op, "missing field 'ticker.symbol'")

            quantity = self._float(op, pos.get("position"), "position")
            if quantity <= 0:
                continue
            market_value = self._float(op, pos.get("marketValue"), "marketValue")
            average_cost = self._float(op, pos.get("cost"), "cost")
            unrealized = self._optional_float(pos.get("unrealizedProfitLoss"))
            if unrealized is None:
                unrealized = market_value - quantity * average_cost
            rate = self._optional_float(pos.get("unrealizedProfitLossRate")) or 0.0
            positions.append(Position(
                symbol=str(symbol).upper(),
                quantity=quantity,
                average_cost=average_cost,
                current_price=market_value / quantity,
                market_value=market_value,
                unrealized_pnl=unrealized,
                unrealized_pnl_percent=rate * 100,
            ))
        return positions

    def _parse_watchlist(self, raw: Any) -> List[WatchlistItem]:
        op = Operation.WATCHLIST
        items = []
        for item in self._data_list(op, raw):
            item = self._dict(op, item, "watchlist item")
            symbol = item.get("symbol")
            if not symbol:
                raise self._fail(op, "missing field 'symbol'")
            ratio = self._optional_float(item.get("changeRatio")) or 0.0
            items.append(WatchlistItem(
                symbol=str(symbol).upper(),
                name=item.get("name") or str(symbol).upper(),
                price=self._float(op, item.get("close"), "close"),
                change=self._optional_float(item.get("change")) or 0.0,
                change_percent=ratio * 100,
            ))
        return items

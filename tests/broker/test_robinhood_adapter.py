"""Tests for the Robinhood adapter."""

import pytest

from brokerlink.broker import Operation, Position, Provider, create_adapter
from brokerlink.broker.robinhood import RobinhoodAdapter
from brokerlink.errors import ParseError


@pytest.fixture
def adapter():
    return RobinhoodAdapter()


def test_create_adapter_selects_by_provider():
    assert isinstance(create_adapter("robinhood"), RobinhoodAdapter)
    assert create_adapter(Provider.ROBINHOOD).provider == Provider.ROBINHOOD
    with pytest.raises(ValueError, match="Unsupported provider"):
        create_adapter("etrade")


class TestRequests:
    """Tests for request construction."""

    def test_quote_url_upper_cases_symbol(self, adapter):
        spec = adapter.build_request(Operation.QUOTE, {"symbol": "aapl"})
        assert spec.method == "GET"
        assert spec.url == "https://api.robinhood.com/quotes/?symbols=AAPL"

    def test_candles_use_timeframe_mapping(self, adapter):
        spec = adapter.build_request(Operation.CANDLES, {"symbol": "TSLA", "timeframe": "1W"})
        assert spec.url == (
            "https://api.robinhood.com/marketdata/historicals/TSLA/?interval=10minute&bounds=regular&span=week"
        )

    def test_watchlist_mutations(self, adapter):
        add = adapter.build_request(Operation.ADD_TO_WATCHLIST, {"symbol": "NVDA"})
        remove = adapter.build_request(Operation.REMOVE_FROM_WATCHLIST, {"symbol": "NVDA"})

        assert add.method == "POST"
        assert add.json == {"instrument": "https://api.robinhood.com/instruments/?symbol=NVDA"}
        assert remove.method == "DELETE"
        assert remove.url.endswith("/watchlists/Default/NVDA/")

    def test_symbol_required(self, adapter):
        with pytest.raises(ValueError, match="requires a symbol"):
            adapter.build_request(Operation.QUOTE, {})

    def test_refresh_request(self, adapter):
        spec = adapter.build_refresh_request("r-1")
        assert spec.method == "POST"
        assert spec.url == "https://robinhood.com/api-token-auth/"
        assert spec.json == {"refresh_token": "r-1"}


class TestAuthHeaders:
    """Tests for auth header priority."""

    def test_access_token_cookie_wins(self, adapter):
        headers = adapter.auth_headers({
            "__Host-Web-App-Secondary-Access-Token": "cookie-token",
            "access_token": "other",
            "device_id": "dev",
        })
        assert headers == {"Authorization": "Bearer cookie-token", "X-Device-ID": "dev"}

    def test_legacy_auth_token(self, adapter):
        assert adapter.auth_headers({"authToken": "legacy"}) == {"Authorization": "Token legacy"}

    def test_cookie_only(self, adapter):
        assert adapter.auth_headers({}) == {}


class TestParsing:
    """Tests for response parsing."""

    def test_quote(self, adapter):
        raw = {"results": [{
            "symbol": "AAPL",
            "last_trade_price": "110.00",
            "previous_close": "100.00",
            "volume": "1000",
        }]}
        quote = adapter.parse_response(Operation.QUOTE, raw, {"symbol": "AAPL"})

        assert quote.symbol == "AAPL"
        assert quote.price == 110.0
        assert quote.change == pytest.approx(10.0)
        assert quote.change_percent == pytest.approx(10.0)
        assert quote.volume == 1000.0
        assert quote.high is None

    def test_quote_missing_price_raises(self, adapter):
        with pytest.raises(ParseError, match="last_trade_price"):
            adapter.parse_response(Operation.QUOTE, {"results": [{"previous_close": "1"}]}, {"symbol": "AAPL"})

    def test_positions(self, adapter):
        raw = {"results": [
            {"symbol": "aapl", "quantity": "10", "average_buy_price": "100", "last_trade_price": "110"},
            {"symbol": "GONE", "quantity": "0", "average_buy_price": "5", "last_trade_price": "5"},
            {"instrument": "https://api.robinhood.com/instruments/x/", "quantity": "3"},
        ]}
        positions = adapter.parse_response(Operation.POSITIONS, raw, {})

        assert positions == [Position("AAPL", 10.0, 100.0, 110.0, 1100.0, 100.0, 10.0)]

    def test_positions_bad_quantity_raises(self, adapter):
        with pytest.raises(ParseError):
            adapter.parse_response(Operation.POSITIONS, {"results": [{"symbol": "A", "quantity": "lots"}]}, {})

    def test_positions_results_not_list_raises(self, adapter):
        with pytest.raises(ParseError, match="not a list"):
            adapter.parse_response(Operation.POSITIONS, {"results": "nope"}, {})

    def test_candles_keep_last_limit(self, adapter):
        raw = {"historicals": [
            {"begins_at": f"2024-01-0{day}T14:30:00Z", "open_price": "1", "high_price": "2",
             "low_price": "0.5", "close_price": str(day), "volume": 10}
            for day in range(1, 6)
        ]}
        candles = adapter.parse_response(Operation.CANDLES, raw, {"symbol": "AAPL", "limit": 2})

        assert [c.close for c in candles] == [4.0, 5.0]
        assert candles[-1].time == 1704465000000

    def test_news(self, adapter):
        raw = {"results": [{"uuid": "n1", "title": "Earnings", "url": "https://x", "source": "Wire",
                            "published_at": "2024-01-01T00:00:00Z"}]}
        news = adapter.parse_response(Operation.NEWS, raw, {"symbol": "AAPL"})
        assert news[0].id == "n1"
        assert news[0].published_at == "2024-01-01T00:00:00Z"

    def test_watchlist_flattens_nested_results(self, adapter):
        raw = {"results": [{"results": [
            {"symbol": "amd", "simple_name": "AMD", "last_trade_price": "150", "previous_close": "100"},
        ]}]}
        items = adapter.parse_response(Operation.WATCHLIST, raw, {})

        assert len(items) == 1
        assert items[0].symbol == "AMD"
        assert items[0].change_percent == pytest.approx(50.0)

    def test_connection_check_accepts_any_answer(self, adapter):
        assert adapter.parse_response(Operation.CONNECTION_CHECK, {"username": "u"}, {}) is True
        assert adapter.parse_response(Operation.CONNECTION_CHECK, None, {}) is True

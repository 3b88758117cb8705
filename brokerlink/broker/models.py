"""Normalized data models produced from provider responses."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class Provider(str, Enum):
    """Supported brokerage platforms."""

    ROBINHOOD = "robinhood"
    WEBULL = "webull"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union[str, "Provider"]) -> "Provider":
        """Accept either a Provider or its (case-insensitive) string value."""
        if isinstance(value, Provider):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Unsupported provider: {value}. Must be one of: {valid}") from None


class Operation(str, Enum):
    """Logical operations understood by every provider adapter."""

    QUOTE = "quote"
    CANDLES = "candles"
    NEWS = "news"
    POSITIONS = "positions"
    WATCHLIST = "watchlist"
    ADD_TO_WATCHLIST = "addToWatchlist"
    REMOVE_FROM_WATCHLIST = "removeFromWatchlist"
    CONNECTION_CHECK = "connectionCheck"

    def __str__(self) -> str:
        return self.value

    @property
    def is_mutation(self) -> bool:
        return self in (Operation.ADD_TO_WATCHLIST, Operation.REMOVE_FROM_WATCHLIST)


@dataclass(frozen=True)
class Position:
    """A holding reported by one provider."""

    symbol: str
    quantity: float
    average_cost: float
    current_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float


@dataclass(frozen=True)
class Quote:
    """Latest price snapshot for a symbol."""

    symbol: str
    price: float
    change: float
    change_percent: float
    timestamp: float
    volume: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None


@dataclass(frozen=True)
class Candle:
    """OHLCV bar. ``time`` is epoch milliseconds."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class NewsItem:
    """News article attached to a symbol."""

    id: str
    title: str
    url: Optional[str]
    source: Optional[str]
    published_at: Optional[str]
    summary: Optional[str] = None


@dataclass(frozen=True)
class WatchlistItem:
    """Watchlist entry."""

    symbol: str
    name: str
    price: float
    change: float
    change_percent: float


@dataclass
class RequestSpec:
    """Provider-specific HTTP request built by an adapter."""

    method: str
    url: str
    json: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)

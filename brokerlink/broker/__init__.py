"""Provider adapters and normalized models."""

from typing import Dict, Type, Union

from .broker import BrokerAdapter
from .models import (
    Candle,
    NewsItem,
    Operation,
    Position,
    Provider,
    Quote,
    RequestSpec,
    WatchlistItem,
)
from .robinhood import RobinhoodAdapter
from .webull import WebullAdapter

ADAPTERS: Dict[Provider, Type[BrokerAdapter]] = {
    Provider.ROBINHOOD: RobinhoodAdapter,
    Provider.WEBULL: WebullAdapter,
}


def create_adapter(provider: Union[str, Provider]) -> BrokerAdapter:
    """
    Create the adapter for a provider.

    Args:
        provider: Provider enum or its string value

    Returns:
        BrokerAdapter instance

    Raises:
        ValueError: If the provider is not supported
    """
    return ADAPTERS[Provider.parse(provider)]()


def create_adapters() -> Dict[Provider, BrokerAdapter]:
    """Create one adapter per supported provider."""
    return {provider: adapter_cls() for provider, adapter_cls in ADAPTERS.items()}


__all__ = [
    "ADAPTERS",
    "BrokerAdapter",
    "Candle",
    "NewsItem",
    "Operation",
    "Position",
    "Provider",
    "Quote",
    "RequestSpec",
    "WatchlistItem",
    "create_adapter",
    "create_adapters",
]

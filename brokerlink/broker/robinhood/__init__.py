from .robinhood_adapter import RobinhoodAdapter

__all__ = ["RobinhoodAdapter"]

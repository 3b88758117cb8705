"""Session-backed brokerage access and cross-provider portfolio aggregation."""

__version__ = "0.1.0"

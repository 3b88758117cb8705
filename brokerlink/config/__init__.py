from .config import (
    AggregationConfig,
    Config,
    HeartbeatSettings,
    HttpConfig,
    RateLimitConfig,
    SessionConfig,
    get_config,
)

__all__ = [
    "AggregationConfig",
    "Config",
    "HeartbeatSettings",
    "HttpConfig",
    "RateLimitConfig",
    "SessionConfig",
    "get_config",
]

"""Configuration management for brokerlink."""

import os
from typing import Optional

import pytz
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Read an environment variable, treating empty strings as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    return int(value) if value is not None else default


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    return float(value) if value is not None else default


class SessionConfig(BaseModel):
    """Session storage and extraction configuration."""

    storage_path: str = Field(default="~/.brokerlink/sessions.enc", description="Encrypted session file")
    key_path: str = Field(default="~/.brokerlink/session.key", description="Per-install key file, created on first use")
    encryption_key: Optional[str] = Field(default=None, description="Fernet key; overrides key_path when set")
    ttl_hours: float = Field(default=24.0, description="Lifetime granted to a freshly extracted session")
    refresh_window_minutes: float = Field(default=60.0, description="Refresh sessions expiring within this window")
    extraction_timeout_seconds: float = Field(default=10.0, description="Bounded wait for the browser script result")

    @field_validator("ttl_hours", "refresh_window_minutes", "extraction_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError(f"Duration must be positive, got {v}")
        return v


class RateLimitConfig(BaseModel):
    """Per-provider fixed-window rate limit."""

    max_requests: int = Field(default=20, description="Requests allowed per window")
    window_seconds: float = Field(default=60.0, description="Window length in seconds")

    @field_validator("max_requests")
    @classmethod
    def validate_max_requests(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_requests must be positive, got {v}")
        return v

    @field_validator("window_seconds")
    @classmethod
    def validate_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"window_seconds must be positive, got {v}")
        return v


class HttpConfig(BaseModel):
    """HTTP client configuration."""

    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    max_attempts: int = Field(default=3, description="Attempts for timeouts and connect errors")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="Browser-like User-Agent header")

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {v}")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be at least 1, got {v}")
        return v


class HeartbeatSettings(BaseModel):
    """Default heartbeat configuration applied to every provider."""

    interval_ms: int = Field(default=15 * 60 * 1000, description="Check interval in milliseconds")
    retry_attempts: int = Field(default=3, description="Failed checks before the connection is declared lost")

    @field_validator("interval_ms", "retry_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that heartbeat values are positive."""
        if v <= 0:
            raise ValueError(f"Heartbeat values must be positive, got {v}")
        return v


class AggregationConfig(BaseModel):
    """Portfolio aggregation and history configuration."""

    summary_ttl_seconds: float = Field(default=300.0, description="Portfolio summary cache lifetime")
    watchlist_ttl_seconds: float = Field(default=120.0, description="Consolidated watchlist cache lifetime")
    history_path: str = Field(default="~/.brokerlink/history.json", description="Daily history JSON file")
    history_retention: int = Field(default=365, description="Number of daily points kept")
    timezone: str = Field(default="America/New_York", description="Timezone that defines 'today'")

    @field_validator("summary_ttl_seconds", "watchlist_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Cache TTL must be positive, got {v}")
        return v

    @field_validator("history_retention")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"history_retention must be positive, got {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the timezone is known to pytz."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}") from None
        return v


class Config(BaseModel):
    """Main configuration class."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    log_level: str = Field(default="INFO", description="Root logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        v_upper = v.upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}")
        return v_upper

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        session_config = SessionConfig(
            storage_path=_env_str("BROKERLINK_SESSION_PATH", "~/.brokerlink/sessions.enc"),
            key_path=_env_str("BROKERLINK_KEY_PATH", "~/.brokerlink/session.key"),
            encryption_key=_env_str("BROKERLINK_ENCRYPTION_KEY"),
            ttl_hours=_env_float("BROKERLINK_SESSION_TTL_HOURS", 24.0),
            refresh_window_minutes=_env_float("BROKERLINK_REFRESH_WINDOW_MINUTES", 60.0),
            extraction_timeout_seconds=_env_float("BROKERLINK_EXTRACTION_TIMEOUT", 10.0),
        )

        rate_limit_config = RateLimitConfig(
            max_requests=_env_int("BROKERLINK_RATE_LIMIT_REQUESTS", 20),
            window_seconds=_env_float("BROKERLINK_RATE_LIMIT_WINDOW", 60.0),
        )

        http_config = HttpConfig(
            timeout_seconds=_env_float("BROKERLINK_HTTP_TIMEOUT", 30.0),
            max_attempts=_env_int("BROKERLINK_HTTP_MAX_ATTEMPTS", 3),
            user_agent=_env_str("BROKERLINK_USER_AGENT", DEFAULT_USER_AGENT),
        )

        heartbeat_config = HeartbeatSettings(
            interval_ms=_env_int("BROKERLINK_HEARTBEAT_INTERVAL_MS", 15 * 60 * 1000),
            retry_attempts=_env_int("BROKERLINK_HEARTBEAT_RETRIES", 3),
        )

        aggregation_config = AggregationConfig(
            summary_ttl_seconds=_env_float("BROKERLINK_SUMMARY_TTL", 300.0),
            watchlist_ttl_seconds=_env_float("BROKERLINK_WATCHLIST_TTL", 120.0),
            history_path=_env_str("BROKERLINK_HISTORY_PATH", "~/.brokerlink/history.json"),
            history_retention=_env_int("BROKERLINK_HISTORY_RETENTION", 365),
            timezone=_env_str("BROKERLINK_TIMEZONE", "America/New_York"),
        )

        return cls(
            session=session_config,
            rate_limit=rate_limit_config,
            http=http_config,
            heartbeat=heartbeat_config,
            aggregation=aggregation_config,
            log_level=_env_str("LOG_LEVEL", "INFO"),
        )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config

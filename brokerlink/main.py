"""Application entry point and composition root."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import httpx

from .aggregation import AggregationEngine
from .broker import BrokerAdapter, Provider, create_adapters
from .client import AuthenticatedRequestClient, RateLimiter
from .config import Config, get_config
from .heartbeat import HeartbeatConfig, HeartbeatMonitor
from .persistence import HistoryStore
from .session import SessionCipher, SessionExtractor, SessionStore
from .utils.logging_utils import mask_amount

logger = logging.getLogger(__name__)


class BrokerLinkApp:
    """Builds every service from configuration and owns their lifecycle."""

    def __init__(self, config: Optional[Config] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the application.

        Args:
            config: Configuration (read from the environment when omitted)
            transport: Optional httpx transport passed to the request client
        """
        self.config = config or get_config()
        self.transport = transport
        self.adapters: Dict[Provider, BrokerAdapter] = {}
        self.session_store: Optional[SessionStore] = None
        self.extractor: Optional[SessionExtractor] = None
        self.client: Optional[AuthenticatedRequestClient] = None
        self.heartbeat: Optional[HeartbeatMonitor] = None
        self.history_store: Optional[HistoryStore] = None
        self.aggregation: Optional[AggregationEngine] = None

    def initialize(self) -> None:
        """Initialize all components."""
        logger.info("Initializing brokerlink...")
        session_cfg = self.config.session

        self.adapters = create_adapters()

        cipher = SessionCipher(key=session_cfg.encryption_key, key_path=session_cfg.key_path)
        self.session_store = SessionStore(Path(session_cfg.storage_path), cipher)
        self.session_store.load()

        self.extractor = SessionExtractor(
            self.session_store,
            self.adapters,
            ttl_seconds=session_cfg.ttl_hours * 3600,
            timeout=session_cfg.extraction_timeout_seconds,
        )

        self.client = AuthenticatedRequestClient(
            self.session_store,
            self.adapters,
            rate_limiter=RateLimiter(
                max_requests=self.config.rate_limit.max_requests,
                window_seconds=self.config.rate_limit.window_seconds,
            ),
            timeout=self.config.http.timeout_seconds,
            max_attempts=self.config.http.max_attempts,
            user_agent=self.config.http.user_agent,
            refresh_window_seconds=session_cfg.refresh_window_minutes * 60,
            default_ttl_seconds=session_cfg.ttl_hours * 3600,
            transport=self.transport,
        )

        self.heartbeat = HeartbeatMonitor(
            self.client,
            self.session_store,
            HeartbeatConfig(
                interval_ms=self.config.heartbeat.interval_ms,
                retry_attempts=self.config.heartbeat.retry_attempts,
            ),
        )

        agg_cfg = self.config.aggregation
        self.history_store = HistoryStore(agg_cfg.history_path, retention=agg_cfg.history_retention)
        self.aggregation = AggregationEngine(
            self.client,
            self.session_store,
            self.history_store,
            summary_ttl_seconds=agg_cfg.summary_ttl_seconds,
            watchlist_ttl_seconds=agg_cfg.watchlist_ttl_seconds,
            timezone=agg_cfg.timezone,
        )

        logger.info(f"Initialized with {len(self.session_store.active_providers())} active session(s)")

    async def shutdown(self) -> None:
        """Stop background work and release network resources."""
        logger.info("Shutting down brokerlink...")
        if self.heartbeat is not None:
            self.heartbeat.destroy()
        if self.client is not None:
            await self.client.close()


async def _run(app: BrokerLinkApp) -> int:
    app.initialize()
    try:
        providers = app.session_store.active_providers()
        if not providers:
            logger.info("No connected providers. Log in through the app to capture a session.")
            return 0

        summary = await app.aggregation.get_summary()
        logger.info(
            f"Portfolio value {mask_amount(summary.total_value)}, "
            f"gain/loss {summary.total_gain_loss_percent:.2f}% "
            f"across {summary.positions_count} positions"
        )
        return 0
    finally:
        await app.shutdown()


def main() -> None:
    """Main entry point: print a portfolio summary for the stored sessions."""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        exit_code = asyncio.run(_run(BrokerLinkApp(config)))
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

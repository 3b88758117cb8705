"""Authenticated, rate-limited HTTP client for brokerage web APIs."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..broker import BrokerAdapter, Operation, Provider, RequestSpec
from ..broker.models import Candle, NewsItem, Position, Quote, WatchlistItem
from ..config.config import DEFAULT_USER_AGENT
from ..errors import (
    BrokerLinkError,
    NetworkFailure,
    ParseError,
    SessionInvalid,
    SessionMissing,
)
from ..session.models import Session
from ..session.session_store import SessionStore
from ..utils.logging_utils import mask_secret
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.ConnectError)

InflightKey = Tuple[Provider, Operation, str]


class AuthenticatedRequestClient:
    """Issues provider requests on behalf of a captured browser session.

    Each call is rate limited per provider, runs against a validated (and if
    needed refreshed) session and returns normalized entities. Identical
    concurrent read calls share one underlying request.
    """

    def __init__(
        self,
        session_store: SessionStore,
        adapters: Mapping[Provider, BrokerAdapter],
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        user_agent: str = DEFAULT_USER_AGENT,
        refresh_window_seconds: float = 60 * 60,
        default_ttl_seconds: float = 24 * 60 * 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait: Optional[Callable[..., float]] = None,
    ):
        """
        Initialize the client.

        Args:
            session_store: Source of provider sessions
            adapters: Adapter per provider
            rate_limiter: Per-provider limiter (20 requests/60s when omitted)
            timeout: Per-request timeout in seconds
            max_attempts: Attempts for timeouts and connect errors
            user_agent: Browser-like User-Agent sent with every request
            refresh_window_seconds: Sessions expiring within this window are refreshed
            default_ttl_seconds: Lifetime used when a refresh response omits ``expires_in``
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
            retry_wait: tenacity wait strategy between transport retries
        """
        self.session_store = session_store
        self.adapters = dict(adapters)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.user_agent = user_agent
        self.refresh_window_seconds = refresh_window_seconds
        self.default_ttl_seconds = default_ttl_seconds
        self.transport = transport
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._client: Optional[httpx.AsyncClient] = None
        self._inflight: Dict[InflightKey, "asyncio.Task[Any]"] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AuthenticatedRequestClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def request(
        self,
        provider: Union[str, Provider],
        operation: Union[str, Operation],
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Perform a logical operation against a provider.

        Args:
            provider: Target provider
            operation: Logical operation
            params: Operation parameters (``symbol``, ``timeframe``, ``limit``)

        Returns:
            Normalized entity (Quote, list of Position, ...) for the operation

        Raises:
            SessionMissing: If there is no session for the provider
            SessionInvalid: If the session is expired and could not be refreshed
            NetworkFailure: On non-2xx responses or transport errors
            ParseError: If the response does not have the expected shape
        """
        provider = Provider.parse(provider)
        operation = Operation(operation)
        params = dict(params or {})

        if operation.is_mutation:
            return await self._execute(provider, operation, params)

        key = (provider, operation, json.dumps(params, sort_keys=True, default=str))
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._execute(provider, operation, params))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight {operation} request for {provider}")
        return await asyncio.shield(task)

    def _forget(self, key: InflightKey, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _execute(self, provider: Provider, operation: Operation, params: Dict[str, Any]) -> Any:
        adapter = self._adapter(provider)
        await self.rate_limiter.acquire(provider.value)
        session = await self.ensure_session(provider)
        spec = adapter.build_request(operation, params)
        logger.debug(f"{spec.method} {spec.url} ({provider} {operation})")
        raw = await self._send_json(provider, operation, session, spec)
        return adapter.parse_response(operation, raw, params)

    async def ensure_session(self, provider: Union[str, Provider]) -> Session:
        """
        Return a usable session, refreshing it when it is expired or about to expire.

        Raises:
            SessionMissing: If no session is stored
            SessionInvalid: If the session is expired and could not be refreshed
        """
        provider = Provider.parse(provider)
        session = self.session_store.peek(provider)
        if session is None:
            raise SessionMissing(provider.value)

        now = self.session_store.clock()
        if session.expires_within(self.refresh_window_seconds, now) and session.refresh_token:
            await self.refresh_session(provider)

        if not session.is_active(self.session_store.clock()):
            reason = "expired, no refresh token" if not session.refresh_token else "expired and refresh failed"
            raise SessionInvalid(provider.value, reason)
        return session

    async def validate_session(self, provider: Union[str, Provider]) -> bool:
        """Validate (refreshing if needed) the provider's session."""
        try:
            await self.ensure_session(provider)
            return True
        except (SessionMissing, SessionInvalid) as e:
            logger.info(str(e))
            return False

    async def refresh_session(self, provider: Union[str, Provider]) -> bool:
        """
        Exchange the session's refresh token for new tokens.

        Returns:
            True if the session was refreshed and persisted
        """
        provider = Provider.parse(provider)
        session = self.session_store.peek(provider)
        if session is None or not session.refresh_token:
            return False

        spec = self._adapter(provider).build_refresh_request(session.refresh_token)
        headers = {**self._common_headers(session), **spec.headers}
        try:
            response = await self._send(spec.method, spec.url, headers, spec.json)
            data = response.json()
        except (NetworkFailure, ValueError) as e:
            logger.warning(f"Failed to refresh {provider} session: {e}")
            return False
        if not isinstance(data, dict):
            logger.warning(f"Unexpected refresh response for {provider}")
            return False

        tokens = data.get("tokens")
        if isinstance(tokens, dict):
            session.tokens.update({str(k): str(v) for k, v in tokens.items() if v is not None})
        if data.get("refresh_token"):
            session.refresh_token = str(data["refresh_token"])
        try:
            expires_in = float(data.get("expires_in", self.default_ttl_seconds))
        except (TypeError, ValueError):
            expires_in = self.default_ttl_seconds
        session.expires_at = self.session_store.clock() + expires_in
        self.session_store.put(session)
        logger.info(f"Refreshed {provider} session, valid for {expires_in / 3600:.1f}h")
        return True

    def _common_headers(self, session: Session) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-site",
        }
        if session.cookies:
            headers["Cookie"] = session.cookies
        return headers

    def build_headers(self, session: Session, spec: Optional[RequestSpec] = None) -> Dict[str, str]:
        """Full header set for a request made with ``session``."""
        adapter = self._adapter(session.provider)
        headers = self._common_headers(session)
        headers.update(adapter.base_headers())
        headers.update(adapter.auth_headers(session.tokens))
        if spec is not None:
            headers.update(spec.headers)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request, retrying transport errors; non-2xx raises NetworkFailure."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.request(method, url, headers=dict(headers), json=body)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout for {method} {url}")
            raise NetworkFailure(f"Request timed out: {url}") from e
        except httpx.ConnectError as e:
            logger.warning(f"Connection error for {method} {url}: {e}")
            raise NetworkFailure(f"Connection failed: {url}") from e
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error for {method} {url}: {e}")
            raise NetworkFailure(f"Request failed: {url}: {e}") from e

        if not response.is_success:
            logger.warning(f"HTTP {response.status_code} for {method} {url}: {response.text[:200]}")
            raise NetworkFailure(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return response

    async def _send_json(self, provider: Provider, operation: Operation, session: Session, spec: RequestSpec) -> Any:
        response = await self._send(spec.method, spec.url, self.build_headers(session, spec), spec.json)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ParseError(provider.value, operation.value, "response is not valid JSON") from None

    # Convenience methods

    async def get_quote(self, provider: Union[str, Provider], symbol: str) -> Quote:
        return await self.request(provider, Operation.QUOTE, {"symbol": symbol})

    async def get_candles(
        self,
        provider: Union[str, Provider],
        symbol: str,
        timeframe: str = "1D",
        limit: int = 100,
    ) -> List[Candle]:
        return await self.request(
            provider, Operation.CANDLES, {"symbol": symbol, "timeframe": timeframe, "limit": limit}
        )

    async def get_news(self, provider: Union[str, Provider], symbol: str) -> List[NewsItem]:
        return await self.request(provider, Operation.NEWS, {"symbol": symbol})

    async def get_positions(self, provider: Union[str, Provider]) -> List[Position]:
        return await self.request(provider, Operation.POSITIONS)

    async def get_watchlist(self, provider: Union[str, Provider]) -> List[WatchlistItem]:
        return await self.request(provider, Operation.WATCHLIST)

    async def add_to_watchlist(self, provider: Union[str, Provider], symbol: str) -> bool:
        """Add a symbol to the provider's watchlist. Returns False on failure."""
        return await self._mutate(provider, Operation.ADD_TO_WATCHLIST, symbol)

    async def remove_from_watchlist(self, provider: Union[str, Provider], symbol: str) -> bool:
        """Remove a symbol from the provider's watchlist. Returns False on failure."""
        return await self._mutate(provider, Operation.REMOVE_FROM_WATCHLIST, symbol)

    async def _mutate(self, provider: Union[str, Provider], operation: Operation, symbol: str) -> bool:
        if not symbol or not symbol.strip():
            logger.warning(f"{operation} requires a symbol")
            return False
        try:
            return bool(await self.request(provider, operation, {"symbol": symbol}))
        except BrokerLinkError as e:
            logger.warning(f"{operation} {symbol} failed for {provider}: {e}")
            return False

    async def check_connection(self, provider: Union[str, Provider]) -> bool:
        """
        Lightweight reachability check using the provider's user endpoint.

        Falls back to the adapter's alternative endpoints when the primary one fails.

        Returns:
            True if any endpoint answered successfully
        """
        provider = Provider.parse(provider)
        try:
            if await self.request(provider, Operation.CONNECTION_CHECK):
                return True
            logger.info(f"Primary connection check for {provider} returned no result")
        except (SessionMissing, SessionInvalid) as e:
            logger.info(f"Connection check skipped: {e}")
            return False
        except (NetworkFailure, ParseError) as e:
            logger.info(f"Primary connection check failed for {provider}: {e}")

        session = self.session_store.peek(provider)
        if session is None:
            return False
        for url in self._adapter(provider).connection_check_fallbacks:
            await self.rate_limiter.acquire(provider.value)
            try:
                await self._send("GET", url, self.build_headers(session))
                logger.info(f"Fallback connection check succeeded for {provider}: {url}")
                return True
            except NetworkFailure as e:
                logger.info(f"Fallback connection check failed for {provider} ({url}): {e}")
        return False

    async def diagnose(self, provider: Union[str, Provider], symbol: str = "AAPL") -> Dict[str, Any]:
        """
        Exercise a provider's endpoints for troubleshooting.

        Returns:
            Dictionary with session info, connection result and per-endpoint counts or errors
        """
        provider = Provider.parse(provider)
        session = self.session_store.peek(provider)
        report: Dict[str, Any] = {
            "provider": provider.value,
            "has_session": session is not None,
            "session_active": bool(session and session.is_active(self.session_store.clock())),
            "cookies": mask_secret(session.cookies) if session else None,
            "token_keys": sorted(session.tokens) if session else [],
        }
        if session is None:
            return report

        report["connection"] = await self.check_connection(provider)
        calls = {
            "positions": lambda: self.get_positions(provider),
            "watchlist": lambda: self.get_watchlist(provider),
            "news": lambda: self.get_news(provider, symbol),
        }
        for name, call in calls.items():
            try:
                result = await call()
                report[name] = {"ok": True, "count": len(result)}
            except BrokerLinkError as e:
                report[name] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        return report

    def _adapter(self, provider: Provider) -> BrokerAdapter:
        try:
            return self.adapters[provider]
        except KeyError:
            raise ValueError(f"No adapter configured for {provider}") from None

"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Callable, Dict, List

import httpx
import pytest
from cryptography.fernet import Fernet
from tenacity import wait_none

from brokerlink.broker import Position, Provider, create_adapters
from brokerlink.client import AuthenticatedRequestClient, RateLimiter
from brokerlink.persistence import HistoryStore
from brokerlink.session import Session, SessionCipher, SessionStore

# 2023-11-14 22:13:20 UTC
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock with a matching async sleep."""

    def __init__(self, now: float = START_TIME):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        target = self.now + seconds
        await asyncio.sleep(0)
        self.now = max(self.now, target)


@pytest.fixture
def clock():
    """Create a fake clock starting at START_TIME."""
    return FakeClock()


@pytest.fixture
def cipher():
    """Create a cipher with a throwaway key."""
    return SessionCipher(key=Fernet.generate_key())


@pytest.fixture
def session_store(tmp_path, cipher, clock):
    """Create an empty session store backed by a temp file."""
    return SessionStore(tmp_path / "sessions.enc", cipher, clock=clock)


@pytest.fixture
def make_session(clock):
    """Factory for sessions that expire relative to the fake clock."""

    def _make(provider=Provider.ROBINHOOD, expires_in: float = 24 * 3600, **kwargs) -> Session:
        defaults: Dict[str, Any] = {
            "cookies": "sessionid=abc123; device_id=dev-1",
            "tokens": {"access_token": "rh-token"} if provider == Provider.ROBINHOOD else {"accessToken": "wb-token"},
        }
        defaults.update(kwargs)
        return Session(provider=provider, expires_at=clock.now + expires_in, **defaults)

    return _make


@pytest.fixture
def adapters():
    """Create the real provider adapters."""
    return create_adapters()


@pytest.fixture
def history_store(tmp_path):
    """Create an empty history store backed by a temp file."""
    return HistoryStore(tmp_path / "history.json")


@pytest.fixture
def make_client(session_store, adapters, clock):
    """Factory for a request client whose HTTP calls go to ``handler``."""
    clients = []

    def _make(handler: Callable[[httpx.Request], httpx.Response], max_requests: int = 20, **kwargs):
        client = AuthenticatedRequestClient(
            session_store,
            adapters,
            rate_limiter=RateLimiter(max_requests, 60.0, clock=clock, sleep=clock.sleep),
            transport=httpx.MockTransport(handler),
            retry_wait=wait_none(),
            **kwargs,
        )
        clients.append(client)
        return client

    return _make


@pytest.fixture
def sample_positions():
    """Positions as two providers would report them."""
    return {
        Provider.ROBINHOOD: [
            Position("AAPL", 10.0, 100.0, 110.0, 1100.0, 100.0, 10.0),
            Position("MSFT", 2.0, 300.0, 270.0, 540.0, -60.0, -10.0),
        ],
        Provider.WEBULL: [
            Position("AAPL", 5.0, 120.0, 110.0, 550.0, -50.0, -8.33),
            Position("TSLA", 1.0, 200.0, 250.0, 250.0, 50.0, 25.0),
        ],
    }

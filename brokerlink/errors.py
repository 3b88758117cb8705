"""Exception hierarchy shared by the session, client, heartbeat and aggregation layers."""

from typing import Optional


class BrokerLinkError(Exception):
    """Base exception for brokerlink errors."""


class SessionMissing(BrokerLinkError):
    """No session on file for the provider. Recoverable only by re-running extraction."""

    def __init__(self, provider: str):
        super().__init__(f"No active session for {provider}")
        self.provider = provider


class SessionInvalid(BrokerLinkError):
    """A session exists but is expired (or about to expire) and could not be refreshed."""

    def __init__(self, provider: str, reason: str = "expired and could not be refreshed"):
        super().__init__(f"Invalid session for {provider}: {reason}")
        self.provider = provider
        self.reason = reason


class NetworkFailure(BrokerLinkError):
    """Non-2xx response or transport error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ParseError(BrokerLinkError):
    """Provider response did not have the expected shape."""

    def __init__(self, provider: str, operation: str, message: str):
        super().__init__(f"Could not parse {operation} response from {provider}: {message}")
        self.provider = provider
        self.operation = operation


class ExtractionTimeout(BrokerLinkError):
    """The browser did not deliver session data within the allotted time."""

    def __init__(self, provider: str, timeout: float):
        super().__init__(f"Session extraction for {provider} timed out after {timeout:g}s")
        self.provider = provider
        self.timeout = timeout


class RateLimited(BrokerLinkError):
    """Request ceiling reached for the current window.

    Internal to the rate limiter: callers are delayed, never shown this error.
    """

    def __init__(self, provider: str, retry_after: float):
        super().__init__(f"Rate limit reached for {provider}, retry in {retry_after:.1f}s")
        self.provider = provider
        self.retry_after = retry_after

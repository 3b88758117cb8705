"""Abstract base class for provider adapters."""

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from ..errors import ParseError
from .models import Operation, Provider, RequestSpec


class BrokerAdapter(ABC):
    """Encapsulates everything that differs between providers.

    An adapter knows a provider's endpoint URL templates, how it wants to be
    authenticated, how its JSON envelopes look, and how to recognize a
    successful interactive login. Everything outside the adapter works on
    normalized entities only.
    """

    provider: Provider
    login_url: str
    refresh_url: str
    # Host substring plus any one of the path substrings marks an authenticated page
    login_success_host: str
    login_success_paths: Tuple[str, ...] = ()
    # Extra endpoints tried by check_connection when the primary one fails
    connection_check_fallbacks: Tuple[str, ...] = ()
    # Provider-specific storage keys copied into tokens during extraction
    storage_token_keys: Tuple[str, ...] = ()

    def is_login_success(self, url: str) -> bool:
        """Return True when ``url`` points into the provider's authenticated area."""
        if not url:
            return False
        parsed = urlparse(url)
        if self.login_success_host not in (parsed.netloc or url):
            return False
        path = parsed.path or url
        return any(fragment in path for fragment in self.login_success_paths)

    def base_headers(self) -> Dict[str, str]:
        """Headers every request to this provider carries, before auth headers."""
        return {}

    @abstractmethod
    def auth_headers(self, tokens: Mapping[str, str]) -> Dict[str, str]:
        """
        Build provider-specific authentication headers.

        Args:
            tokens: Tokens captured for the session

        Returns:
            Header mapping; empty when the provider relies on cookies alone
        """

    @abstractmethod
    def build_request(self, operation: Operation, params: Mapping[str, Any]) -> RequestSpec:
        """
        Build the HTTP request for a logical operation.

        Args:
            operation: Logical operation to perform
            params: Operation parameters (``symbol``, ``timeframe``, ``limit`` ...)

        Returns:
            RequestSpec with method, absolute URL and optional JSON body
        """

    @abstractmethod
    def parse_response(self, operation: Operation, raw: Any, params: Mapping[str, Any]) -> Any:
        """
        Translate a provider JSON payload into normalized entities.

        Raises:
            ParseError: If the payload does not have the expected shape
        """

    def extraction_script(self) -> str:
        """JavaScript fragment that adds provider-specific values to ``tokens``."""
        return ""

    def build_refresh_request(self, refresh_token: str) -> RequestSpec:
        """Request used to exchange a refresh token for new tokens."""
        return RequestSpec(
            method="POST",
            url=self.refresh_url,
            json={"refresh_token": refresh_token},
            headers={"Content-Type": "application/json"},
        )

    # Parsing helpers shared by the concrete adapters

    def _fail(self, operation: Operation, message: str) -> ParseError:
        return ParseError(self.provider.value, operation.value, message)

    def _require_symbol(self, operation: Operation, params: Mapping[str, Any]) -> str:
        symbol = params.get("symbol")
        if not symbol:
            raise ValueError(f"{operation.value} requires a symbol")
        return str(symbol).upper()

    def _float(self, operation: Operation, value: Any, field_name: str) -> float:
        """Convert a required numeric field, raising ParseError when missing or invalid."""
        if value is None or value == "":
            raise self._fail(operation, f"missing field '{field_name}'")
        try:
            result = float(value)
        except (TypeError, ValueError):
            raise self._fail(operation, f"field '{field_name}' is not numeric: {value!r}") from None
        if not math.isfinite(result):
            raise self._fail(operation, f"field '{field_name}' is not finite")
        return result

    @staticmethod
    def _optional_float(value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            result = float(value)
        except (TypeError, ValueError):
            return None
        return result if math.isfinite(result) else None

    def _list(self, operation: Operation, value: Any, field_name: str) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise self._fail(operation, f"'{field_name}' is not a list")
        return value

    def _dict(self, operation: Operation, value: Any, field_name: str) -> Dict[str, Any]:
        if not isinstance(value, dict):
            raise self._fail(operation, f"'{field_name}' is not an object")
        return value

"""Data models for captured brokerage sessions."""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..broker.models import Provider


@dataclass
class Session:
    """Authentication artifacts captured for one provider.

    ``expires_at`` is epoch seconds. The record is serialized with camelCase
    keys so that the encrypted blob stays compatible with the mobile client.
    """

    provider: Provider
    cookies: str = ""
    tokens: Dict[str, str] = field(default_factory=dict)
    expires_at: float = 0.0
    user_id: Optional[str] = None
    refresh_token: Optional[str] = None

    def is_active(self, now: Optional[float] = None) -> bool:
        """A session is active while its expiry lies in the future."""
        if now is None:
            now = time.time()
        return self.expires_at > now

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        """True if the session expires within ``seconds`` from now (or already has)."""
        if now is None:
            now = time.time()
        return self.expires_at - now <= seconds

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary."""
        result = {
            "provider": self.provider.value,
            "cookies": self.cookies,
            "tokens": dict(self.tokens),
            "expiresAt": self.expires_at,
        }
        # Only include optional fields if they have values
        if self.user_id:
            result["userId"] = self.user_id
        if self.refresh_token:
            result["refreshToken"] = self.refresh_token
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """
        Build a Session from its serialized form.

        Raises:
            ValueError: If the provider is unknown or required fields are malformed
        """
        if not isinstance(data, dict):
            raise ValueError("session entry is not an object")
        provider = Provider.parse(data.get("provider", ""))
        tokens = data.get("tokens") or {}
        if not isinstance(tokens, dict):
            raise ValueError("session tokens are not an object")
        try:
            expires_at = float(data.get("expiresAt"))
        except (TypeError, ValueError):
            raise ValueError(f"invalid expiresAt: {data.get('expiresAt')!r}") from None
        if not math.isfinite(expires_at):
            raise ValueError("expiresAt is not finite")
        return cls(
            provider=provider,
            cookies=str(data.get("cookies") or ""),
            tokens={str(k): str(v) for k, v in tokens.items() if v is not None},
            expires_at=expires_at,
            user_id=data.get("userId"),
            refresh_token=data.get("refreshToken"),
        )


@dataclass
class ExtractionResult:
    """Outcome of a session extraction attempt."""

    success: bool
    session: Optional[Session] = None
    error: Optional[str] = None

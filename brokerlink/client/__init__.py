from .rate_limiter import RateLimiter
from .request_client import AuthenticatedRequestClient

__all__ = ["AuthenticatedRequestClient", "RateLimiter"]

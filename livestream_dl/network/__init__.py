"""
Network Layer.

This package handles all HTTP communication: the pooled client, adaptive
rate limiting and the retry policy for transient failures.
"""

from .client import FetchResult, HttpClient
from .rate_limiter import AdaptiveRateLimiter
from .retry import backoff_delay, retry_transient

__all__ = [
    "AdaptiveRateLimiter",
    "FetchResult",
    "HttpClient",
    "backoff_delay",
    "retry_transient",
]

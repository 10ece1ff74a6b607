"""
apilink Resilience — Request Pipeline Primitives.

- ConcurrencyGate: bounded FIFO admission
- RateLimiter: header-driven quota gate + Retry-After parsing
- ResponseCache: TTL + capacity bound GET cache
- RetryPolicy: failure classification + exponential backoff
"""
from apilink.resilience.cache import CacheEntry, ResponseCache, make_cache_key
from apilink.resilience.concurrency import ConcurrencyGate
from apilink.resilience.rate_limiter import RateLimiter, RateLimitStatus
from apilink.resilience.retry import Outcome, RetryPolicy

__all__ = [
    "CacheEntry",
    "ConcurrencyGate",
    "Outcome",
    "RateLimiter",
    "RateLimitStatus",
    "ResponseCache",
    "RetryPolicy",
    "make_cache_key",
]

"""
In-process state stores owned by the orchestrator.

- ResponseCache: TTL-bounded cache of generation results with a background sweep
- RateLimiter: fixed-window request quota per conversation
- UsageTracker: cumulative token usage per conversation

Each store is constructed explicitly and injected, so several orchestrators
can coexist in one process and tests can drive them with a fake clock.
"""

from prdsmith.state.cache import CacheEntry, ResponseCache, make_cache_key
from prdsmith.state.rate_limiter import RateLimiter, RateWindow
from prdsmith.state.usage import UsageTracker

__all__ = [
    "CacheEntry",
    "ResponseCache",
    "make_cache_key",
    "RateLimiter",
    "RateWindow",
    "UsageTracker",
]

"""
TTL-bounded response cache.

Entries expire lazily (a stale read is a miss and removes the entry) and are
also swept periodically by a background task, so memory stays bounded even
for keys that are never read again.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import dataclass

from prdsmith.config.logging import get_logger
from prdsmith.models import GenerationResult

logger = get_logger(__name__)


def make_cache_key(
    prompt: str,
    section: str,
    model: str,
    temperature: float,
    prefix_chars: int = 200,
) -> str:
    """
    Derive a deterministic cache key.

    Only the first ``prefix_chars`` characters of the prompt participate, so
    prompts sharing that prefix (and section, model, temperature) share an
    entry.
    """
    key_data = {
        "prompt": prompt[:prefix_chars],
        "section": section,
        "model": model,
        "temperature": temperature,
    }
    canonical = json.dumps(key_data, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """One cached generation result with its expiry metadata."""

    key: str
    value: GenerationResult
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResponseCache:
    """
    In-memory cache of generation results.

    Entries are replaced, never mutated. All methods are synchronous and do
    not await, so they are atomic on the event loop.

    Example::

        cache = ResponseCache(default_ttl=1800, sweep_interval=1800)
        async with cache:          # starts the background sweep
            cache.set(key, result)
            cache.get(key)

    Args:
        default_ttl: Seconds an entry stays valid when ``set`` gets no ttl
        sweep_interval: Seconds between background sweeps
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        default_ttl: float = 1800.0,
        sweep_interval: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> GenerationResult | None:
        """Return the cached value, or None on a miss or an expired entry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            # Only drop the entry we looked at; a concurrent set may have replaced it
            if self._entries.get(key) is entry:
                del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: GenerationResult, ttl: float | None = None) -> None:
        """Store a value, replacing any previous entry for the key."""
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Response cache cleared")

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the background sweep (requires a running event loop)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the background sweep."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def __aenter__(self) -> ResponseCache:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

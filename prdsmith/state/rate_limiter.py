"""
Fixed-window rate limiting per conversation.

A window starts on a conversation's first request. Each allowed request
increments the window's count; once the count reaches the quota, further
requests are rejected until the window expires. With ``block_seconds`` set, a
violation blocks the conversation for that long instead, after which a fresh
window starts.

Windows are not garbage collected implicitly. ``purge_idle`` removes expired
ones and is called by the orchestrator's maintenance loop only when idle
eviction is enabled.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from prdsmith.config.logging import get_logger
from prdsmith.errors import RateLimitExceeded

logger = get_logger(__name__)


@dataclass
class RateWindow:
    """Request count of one conversation within its current window."""

    conversation_id: str
    count: int
    window_start: float
    blocked_until: float | None = None


class RateLimiter:
    """
    Per-conversation request quota.

    ``check`` never awaits, so the read-modify-write of a window is atomic on
    the event loop and conversations never contend with each other.

    Args:
        quota: Requests allowed per window
        window_seconds: Window length
        block_seconds: Block applied after a violation (0 disables)
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        quota: int,
        window_seconds: float,
        block_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if quota <= 0:
            raise ValueError("quota must be positive")
        self.quota = quota
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    def check(self, conversation_id: str) -> int:
        """
        Count a request against the conversation's quota.

        Returns:
            Requests remaining in the current window

        Raises:
            RateLimitExceeded: If the quota is used up or the conversation is blocked
        """
        now = self._clock()
        window = self._windows.get(conversation_id)
        if window is None:
            window = RateWindow(conversation_id=conversation_id, count=0, window_start=now)
            self._windows[conversation_id] = window

        if window.blocked_until is not None:
            if now < window.blocked_until:
                raise RateLimitExceeded(conversation_id, retry_after=window.blocked_until - now)
            window.blocked_until = None
            window.count = 0
            window.window_start = now
        elif now - window.window_start > self.window_seconds:
            window.count = 0
            window.window_start = now

        if window.count >= self.quota:
            if self.block_seconds > 0:
                window.blocked_until = now + self.block_seconds
                retry_after = self.block_seconds
            else:
                retry_after = max(0.0, window.window_start + self.window_seconds - now)
            logger.warning(
                f"Rate limit hit for conversation {conversation_id} "
                f"({window.count}/{self.quota}, retry after {retry_after:.1f}s)"
            )
            raise RateLimitExceeded(conversation_id, retry_after=retry_after)

        window.count += 1
        return self.quota - window.count

    def get_window(self, conversation_id: str) -> RateWindow | None:
        """Return a copy of the conversation's window, if any."""
        window = self._windows.get(conversation_id)
        return replace(window) if window is not None else None

    def reset(self, conversation_id: str | None = None) -> None:
        """Forget one conversation's window, or all of them."""
        if conversation_id is None:
            self._windows.clear()
        else:
            self._windows.pop(conversation_id, None)

    def purge_idle(self) -> int:
        """Remove windows that have expired and are not blocking. Returns the count."""
        now = self._clock()
        idle = [
            cid for cid, window in self._windows.items()
            if (window.blocked_until is None or now >= window.blocked_until)
            and now - window.window_start > self.window_seconds
        ]
        for cid in idle:
            del self._windows[cid]
        if idle:
            logger.debug(f"Evicted {len(idle)} idle rate windows")
        return len(idle)

    def __len__(self) -> int:
        return len(self._windows)

"""
Retry with exponential backoff for upstream calls.

Each attempt is bounded by its own timeout. Failures are read through their
``UpstreamErrorKind``: non-retriable kinds fail immediately, retriable kinds
are retried until attempts run out. The delay before retry ``n`` (1-based) is

    min(base_delay * 2 ** (n - 1), max_delay) * (1 + U(0, jitter))

Only ``UpstreamError`` (and attempt timeouts, which become ``TIMEOUT``
errors) take part in retrying. Any other exception propagates unchanged on
the attempt that raised it. The attempt loop itself is tenacity's
``AsyncRetrying``; this module supplies the stop, wait and retry rules.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from prdsmith.config.logging import get_logger
from prdsmith.config.settings import RetrySettings
from prdsmith.errors import UpstreamError, UpstreamErrorKind

logger = get_logger(__name__)

T = TypeVar("T")


class RetryState(str, Enum):
    """Lifecycle of one retried operation."""

    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


RetryObserver = Callable[[RetryState, int, BaseException | None], None]


class RetryPolicy:
    """
    Runs an async operation with per-attempt timeouts and backoff.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        max_delay: Cap on a single delay (before jitter)
        jitter: Random extra delay as a fraction of the delay
        attempt_timeout: Timeout of a single attempt (None disables)
        sleep: Sleep coroutine (injectable for tests)
        rng: Random source for jitter (injectable for tests)
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.25,
        attempt_timeout: float | None = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: RetrySettings, **kwargs) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
            attempt_timeout=settings.upstream_timeout,
            **kwargs,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _base_delay_for(self, retry: int) -> float:
        return min(self.base_delay * 2 ** (retry - 1), self.max_delay)

    def delay_for(self, retry: int) -> float:
        """Delay before the given retry (1-based), jitter included."""
        return self._base_delay_for(retry) * (1 + self._rng.uniform(0, self.jitter))

    @property
    def worst_case_duration(self) -> float | None:
        """
        Upper bound on the time ``run`` can take: every attempt timing out plus
        every delay at maximum jitter. None when attempts are unbounded in time.
        """
        if self.attempt_timeout is None:
            return None
        delays = sum(
            self._base_delay_for(n) * (1 + self.jitter) for n in range(1, self.max_retries + 1)
        )
        return self.max_attempts * self.attempt_timeout + delays

    async def _attempt(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        if self.attempt_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
        except TimeoutError as exc:
            raise UpstreamError.from_kind(
                UpstreamErrorKind.TIMEOUT,
                f"{description} timed out after {self.attempt_timeout}s",
                cause=exc,
            ) from exc

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "upstream call",
        observer: RetryObserver | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or retrying is pointless.

        ``operation`` is called once per attempt and must return a fresh
        awaitable each time.

        Raises:
            UpstreamError: The last failure, once it is non-retriable or
                attempts are exhausted
        """
        attempt = 0

        def before(state: RetryCallState) -> None:
            nonlocal attempt
            attempt = state.attempt_number
            if observer:
                observer(RetryState.ATTEMPTING, attempt, None)

        def before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception()
            logger.info(
                f"{description} attempt {state.attempt_number}/{self.max_attempts} failed "
                f"[{exc.kind.value}], retrying in {state.next_action.sleep:.2f}s"
            )
            if observer:
                observer(RetryState.RETRYING, state.attempt_number, exc)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=lambda state: self.delay_for(state.attempt_number),
            retry=retry_if_exception(_is_retriable),
            before=before,
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            result = await retrying(self._attempt, operation, description)
        except UpstreamError as exc:
            logger.warning(
                f"{description} failed after {attempt} attempt(s) [{exc.kind.value}]: {exc}"
            )
            if observer:
                observer(RetryState.FAILED, attempt, exc)
            raise

        if observer:
            observer(RetryState.SUCCESS, attempt, None)
        return result


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.retriable

"""
Orchestration component factory.

Centralises the construction of the orchestrator and its stores from
settings, so the CLI, tests and any future server entry point wire them the
same way.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from prdsmith.config.settings import Settings
from prdsmith.llm.content_filter import ContentFilter
from prdsmith.llm.context import ConversationStore
from prdsmith.llm.orchestrator import RequestOrchestrator
from prdsmith.llm.retry import RetryPolicy
from prdsmith.llm.tokens import TokenAccountant
from prdsmith.llm.upstream import LiteLLMClient, UpstreamClient
from prdsmith.state import RateLimiter, ResponseCache, UsageTracker
from prdsmith.streaming.broker import StreamingBroker, Transport


class OrchestratorComponents:
    """
    Factory for building orchestration components from settings.

    Example::

        factory = OrchestratorComponents(settings)
        async with factory.create_broker(transport) as broker, \\
                   factory.create_orchestrator(broker=broker) as orchestrator:
            result = await orchestrator.generate(context, prompt)

    Args:
        settings: Application settings
        clock: Monotonic time source shared by the cache and rate limiter
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.clock = clock

    def create_client(self) -> LiteLLMClient:
        return LiteLLMClient(self.settings.llm)

    def create_cache(self) -> ResponseCache:
        return ResponseCache(
            default_ttl=self.settings.cache.ttl_seconds,
            sweep_interval=self.settings.cache.sweep_interval_seconds,
            clock=self.clock,
        )

    def create_rate_limiter(self) -> RateLimiter:
        return RateLimiter(
            quota=self.settings.rate_limit.quota,
            window_seconds=self.settings.rate_limit.window_seconds,
            block_seconds=self.settings.rate_limit.block_seconds,
            clock=self.clock,
        )

    def create_retry_policy(self, **kwargs) -> RetryPolicy:
        """Create a RetryPolicy; ``sleep`` and ``rng`` may be overridden."""
        return RetryPolicy.from_settings(self.settings.retry, **kwargs)

    def create_accountant(self) -> TokenAccountant:
        return TokenAccountant(
            model=self.settings.llm.model,
            default_multiplier=self.settings.tokens.default_multiplier,
            multipliers=self.settings.tokens.model_multipliers,
        )

    def create_content_filter(self) -> ContentFilter:
        return ContentFilter(
            rules=self.settings.content_filter.rules,
            enabled=self.settings.content_filter.enabled,
        )

    def create_broker(self, transport: Transport) -> StreamingBroker:
        return StreamingBroker(transport, max_pending=self.settings.streaming.max_pending_events)

    def create_orchestrator(
        self,
        client: UpstreamClient | None = None,
        broker: StreamingBroker | None = None,
        store: ConversationStore | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> RequestOrchestrator:
        """Create a RequestOrchestrator with fresh stores."""
        return RequestOrchestrator(
            self.settings,
            client or self.create_client(),
            cache=self.create_cache(),
            rate_limiter=self.create_rate_limiter(),
            usage=UsageTracker(),
            retry_policy=retry_policy or self.create_retry_policy(),
            accountant=self.create_accountant(),
            content_filter=self.create_content_filter(),
            broker=broker,
            store=store,
        )
